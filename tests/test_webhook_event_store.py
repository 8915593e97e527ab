"""
Tests for the webhook event store.

Tests cover:
1. Retryable query (filter, oldest first, page size)
2. Invariant guards on update (transitions, retry_count, recoverable)
3. Live ingestion helpers (claim, mark_completed/failed/unhandled)
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from app.core.errors import StoreError
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services.webhook_events import WebhookEventStore


@pytest.fixture
def store(test_session) -> WebhookEventStore:
    return WebhookEventStore(test_session)


class TestListRetryable:
    """Tests for WebhookEventStore.list_retryable."""

    def test_filters_and_orders_oldest_first(self, store, webhook_event_factory):
        now = datetime.now(timezone.utc)
        webhook_event_factory("evt_new", created_at=now)
        webhook_event_factory("evt_old", created_at=now - timedelta(hours=2))
        webhook_event_factory("evt_exhausted", retry_count=3, created_at=now - timedelta(hours=3))
        webhook_event_factory("evt_gone", recoverable=False, created_at=now - timedelta(hours=4))
        webhook_event_factory("evt_done", status=WebhookEventStatus.COMPLETED, created_at=now - timedelta(hours=5))

        events = store.list_retryable(max_retries=3, limit=10)

        assert [e.event_id for e in events] == ["evt_old", "evt_new"]

    def test_respects_page_size(self, store, webhook_event_factory):
        for i in range(4):
            webhook_event_factory(f"evt_{i}")

        assert len(store.list_retryable(max_retries=3, limit=2)) == 2


class TestUpdateInvariants:
    """Tests for the invariants enforced by WebhookEventStore.update."""

    def test_failed_to_completed_allowed(self, store, webhook_event_factory):
        event = webhook_event_factory()

        updated = store.update(event.id, status=WebhookEventStatus.COMPLETED, retry_count=1)

        assert updated.status == WebhookEventStatus.COMPLETED
        assert updated.retry_count == 1

    def test_completed_cannot_go_back_to_failed(self, store, webhook_event_factory):
        event = webhook_event_factory(status=WebhookEventStatus.COMPLETED)

        with pytest.raises(ValueError):
            store.update(event.id, status=WebhookEventStatus.FAILED)

    def test_unrecoverable_is_terminal(self, store, webhook_event_factory):
        event = webhook_event_factory(status=WebhookEventStatus.UNRECOVERABLE, recoverable=False)

        with pytest.raises(ValueError):
            store.update(event.id, status=WebhookEventStatus.COMPLETED)

    def test_retry_count_never_decreases(self, store, webhook_event_factory):
        event = webhook_event_factory(retry_count=2)

        with pytest.raises(ValueError):
            store.update(event.id, retry_count=1)

    def test_recoverable_never_reverts(self, store, webhook_event_factory):
        event = webhook_event_factory(recoverable=False)

        with pytest.raises(ValueError):
            store.update(event.id, recoverable=True)

    def test_unknown_field_rejected(self, store, webhook_event_factory):
        event = webhook_event_factory()

        with pytest.raises(ValueError):
            store.update(event.id, event_id="evt_other")

    def test_validates_against_committed_row(self, store, webhook_event_factory, test_engine):
        event = webhook_event_factory()

        # Another session finalizes the row after this one loaded it
        with Session(test_engine) as other:
            row = other.get(WebhookEvent, event.id)
            row.status = WebhookEventStatus.UNRECOVERABLE
            row.recoverable = False
            other.add(row)
            other.commit()

        with pytest.raises(ValueError):
            store.update(event.id, status=WebhookEventStatus.COMPLETED)

    def test_missing_event_raises_store_error(self, store):
        with pytest.raises(StoreError):
            store.update(12345, retry_count=1)


class TestLiveIngestionHelpers:
    """Tests for claim and the mark_* helpers."""

    def test_claim_new_event(self, store):
        is_new, existing = store.claim("evt_1", "invoice.paid", payload={"id": "evt_1"})

        assert is_new is True
        assert existing is None
        event = store.get_by_event_id("evt_1")
        assert event.status == WebhookEventStatus.PENDING
        assert event.payload == {"id": "evt_1"}

    def test_claim_duplicate_reports_existing_status(self, store):
        store.claim("evt_1", "invoice.paid")
        store.mark_completed("evt_1")

        is_new, existing = store.claim("evt_1", "invoice.paid")

        assert is_new is False
        assert existing == WebhookEventStatus.COMPLETED

    def test_mark_failed_keeps_event_recoverable(self, store):
        store.claim("evt_1", "invoice.paid")

        event = store.mark_failed("evt_1", "No user found")

        assert event.status == WebhookEventStatus.FAILED
        assert event.recoverable is True
        assert event.error_message == "No user found"

    def test_mark_unhandled_is_unrecoverable(self, store):
        store.claim("evt_1", "customer.created")

        event = store.mark_unhandled("evt_1", "customer.created")

        assert event.status == WebhookEventStatus.UNRECOVERABLE
        assert event.recoverable is False
        assert event.error_message == "Unhandled event type: customer.created"
        assert event.completed_at is not None

    def test_mark_completed_unknown_event_raises(self, store):
        with pytest.raises(StoreError):
            store.mark_completed("evt_missing")
