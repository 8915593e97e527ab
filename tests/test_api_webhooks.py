"""
Tests for live Stripe webhook ingestion.

Signature verification is patched out; everything past it runs against the
test database and the fake provider.
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.api import deps
from app.api.webhooks import handle_event
from app.core.config import settings
from app.core.errors import StoreError
from app.db import get_session
from app.main import app
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services.billing_provider import ProviderEvent
from app.services.event_processor import EventProcessor
from app.services.webhook_events import WebhookEventStore
from tests.conftest import make_event, make_snapshot

URL = f"{settings.API_V1_STR}/webhooks/stripe"
HEADERS = {"stripe-signature": "t=1,v1=deadbeef"}


@pytest.fixture(scope="function")
def client(test_engine, fake_provider):
    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[deps.get_provider] = lambda: fake_provider

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


def deliver(client, event: ProviderEvent, headers=HEADERS):
    with patch("app.api.webhooks.construct_webhook_event", return_value=event):
        return client.post(URL, content=b"{}", headers=headers)


def stored_event(test_session, event_id: str) -> WebhookEvent:
    test_session.expire_all()
    return test_session.exec(select(WebhookEvent).where(WebhookEvent.event_id == event_id)).one()


class TestSignature:
    """Tests for webhook signature verification."""

    def test_missing_signature_rejected(self, client):
        response = deliver(client, make_event(), headers={})

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_bad_signature_rejected(self, client, test_session):
        error = stripe.SignatureVerificationError("No signatures found matching the expected signature", "t=1")
        with patch("app.api.webhooks.construct_webhook_event", side_effect=error):
            response = client.post(URL, content=b"{}", headers=HEADERS)

        assert response.status_code == 401
        assert test_session.exec(select(WebhookEvent)).all() == []

    def test_malformed_body_rejected(self, client):
        with patch("app.api.webhooks.construct_webhook_event", side_effect=ValueError("Expecting value")):
            response = client.post(URL, content=b"not json", headers=HEADERS)

        assert response.status_code == 401


class TestIngestion:
    """Tests for recording and processing delivered events."""

    def test_processes_and_completes_event(self, client, fake_provider, subscription_factory, test_session):
        subscription_factory(status=SubscriptionStatus.ACTIVE)
        fake_provider.subscriptions["sub_1"] = make_snapshot(status=SubscriptionStatus.PAST_DUE)

        response = deliver(client, make_event("evt_1"))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert stored_event(test_session, "evt_1").status == WebhookEventStatus.COMPLETED
        assert test_session.get(Subscription, "sub_1").status == SubscriptionStatus.PAST_DUE

    def test_duplicate_delivery_is_skipped(self, client, fake_provider, subscription_factory):
        subscription_factory()
        fake_provider.subscriptions["sub_1"] = make_snapshot()
        deliver(client, make_event("evt_1"))
        calls_after_first = len(fake_provider.calls)

        response = deliver(client, make_event("evt_1"))

        assert response.json() == {"received": True, "skipped": True, "reason": "Event already completed"}
        assert len(fake_provider.calls) == calls_after_first

    def test_processing_error_is_recorded_for_recovery(self, client, fake_provider, test_session):
        fake_provider.subscriptions["sub_1"] = make_snapshot(user_id=None)

        response = deliver(client, make_event("evt_1"))

        assert response.status_code == 200
        assert response.json()["received"] is True
        assert "No user found" in response.json()["error"]

        event = stored_event(test_session, "evt_1")
        assert event.status == WebhookEventStatus.FAILED
        assert event.recoverable is True
        assert "No user found" in event.error_message

    def test_unhandled_type_marked_unrecoverable(self, client, test_session):
        event = ProviderEvent(id="evt_1", type="customer.created", data_object={"id": "cus_1"})

        response = deliver(client, event)

        assert response.json() == {"received": True, "warning": "Unhandled event type: customer.created"}
        stored = stored_event(test_session, "evt_1")
        assert stored.status == WebhookEventStatus.UNRECOVERABLE
        assert stored.recoverable is False


class TestHandleEvent:
    """Tests for handle_event with a failing store."""

    def test_unavailable_store_still_processes(self):
        store = MagicMock(spec=WebhookEventStore)
        store.claim.side_effect = StoreError("claim_webhook_event failed")
        processor = MagicMock(spec=EventProcessor)
        processor.process.return_value = True

        response = handle_event(make_event(), store, processor)

        assert response.status_code == 200
        processor.process.assert_called_once()
        store.mark_completed.assert_not_called()

    def test_completion_write_failure_returns_500(self):
        store = MagicMock(spec=WebhookEventStore)
        store.claim.return_value = (True, None)
        store.mark_completed.side_effect = StoreError("update_webhook_event failed")
        processor = MagicMock(spec=EventProcessor)
        processor.process.return_value = True

        response = handle_event(make_event(), store, processor)

        assert response.status_code == 500

    def test_concurrent_claim_is_treated_as_duplicate(self):
        store = MagicMock(spec=WebhookEventStore)
        store.claim.return_value = (False, WebhookEventStatus.PENDING)
        processor = MagicMock(spec=EventProcessor)

        response = handle_event(make_event(), store, processor)

        assert response.status_code == 200
        processor.process.assert_not_called()
