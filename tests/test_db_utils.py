"""
Tests for store error translation.

Tests cover:
- Transient error detection
- store_errors rolling back and raising StoreError
- Session usable again after a translated failure
"""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.db_utils import is_transient_error, store_errors, TRANSIENT_ERRORS
from app.core.errors import StoreError
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.subscription_store import SubscriptionStore


class TestIsTransientError:
    """Tests for is_transient_error function."""

    @pytest.mark.parametrize("error_msg", list(TRANSIENT_ERRORS) + ["SSL Connection Has Been Closed Unexpectedly"])
    def test_detects_transient_errors(self, error_msg):
        assert is_transient_error(Exception(error_msg)) is True

    @pytest.mark.parametrize("error_msg", [
        "duplicate key value violates unique constraint",
        "column \"plan\" does not exist",
        "",
    ])
    def test_ignores_other_errors(self, error_msg):
        assert is_transient_error(Exception(error_msg)) is False


class TestStoreErrors:
    """Tests for the store_errors context manager."""

    def test_passes_through_on_success(self):
        session = MagicMock()

        with store_errors(session, "noop"):
            pass

        session.rollback.assert_not_called()

    def test_rolls_back_and_raises_store_error(self):
        session = MagicMock()

        with pytest.raises(StoreError) as exc_info:
            with store_errors(session, "upsert_subscription", subscription_id="sub_1"):
                raise OperationalError("UPDATE", {}, Exception("connection refused"))

        session.rollback.assert_called_once()
        assert "upsert_subscription failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_failed_rollback_still_raises_store_error(self):
        session = MagicMock()
        session.rollback.side_effect = OperationalError("ROLLBACK", {}, Exception("server closed the connection"))

        with pytest.raises(StoreError):
            with store_errors(session, "count_subscriptions"):
                raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    def test_non_database_errors_are_not_translated(self):
        session = MagicMock()

        with pytest.raises(ValueError):
            with store_errors(session, "update_webhook_event"):
                raise ValueError("Illegal webhook event transition")

        session.rollback.assert_not_called()

    def test_session_usable_after_failure(self, test_session, subscription_factory):
        subscription_factory(sub_id="sub_1")
        store = SubscriptionStore(test_session)

        # Duplicate primary key
        with pytest.raises(StoreError):
            with store_errors(test_session, "insert_subscription"):
                test_session.add(Subscription(id="sub_1", user_id="user_2", status=SubscriptionStatus.ACTIVE))
                test_session.flush()

        assert store.get("sub_1").user_id == "user_1"


def test_integrity_error_is_a_store_error():
    session = MagicMock()
    with pytest.raises(StoreError):
        with store_errors(session, "claim_webhook_event"):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
