"""
Webhook Event Store

Persistence for inbound provider events. Live ingestion claims each event id
exactly once; the recovery sweep only reads retryable failures and writes
retry bookkeeping through ``update``.

Status transitions only move forward:
    pending -> completed | failed | unrecoverable
    failed  -> completed | unrecoverable

``retry_count`` never decreases and ``recoverable`` never goes back to True.
"""

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.db_utils import store_errors
from app.core.errors import StoreError
from app.core.logging_config import get_logger
from app.core.typing import col, utc_now
from app.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[WebhookEventStatus, set[WebhookEventStatus]] = {
    WebhookEventStatus.PENDING: {
        WebhookEventStatus.COMPLETED,
        WebhookEventStatus.FAILED,
        WebhookEventStatus.UNRECOVERABLE,
    },
    WebhookEventStatus.FAILED: {
        WebhookEventStatus.COMPLETED,
        WebhookEventStatus.UNRECOVERABLE,
    },
    WebhookEventStatus.COMPLETED: set(),
    WebhookEventStatus.UNRECOVERABLE: set(),
}

UPDATABLE_FIELDS = {
    "status",
    "recoverable",
    "retry_count",
    "last_retry_at",
    "error_message",
    "completed_at",
}


def validate_changes(event: WebhookEvent, changes: dict[str, Any]) -> None:
    """Raise ValueError if applying ``changes`` would break an event invariant."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update webhook event fields: {sorted(unknown)}")

    if "status" in changes:
        new_status = WebhookEventStatus(changes["status"])
        current = WebhookEventStatus(event.status)
        if new_status != current and new_status not in ALLOWED_TRANSITIONS[current]:
            raise ValueError(f"Illegal webhook event transition {current.value} -> {new_status.value}")

    if "retry_count" in changes and changes["retry_count"] < event.retry_count:
        raise ValueError(
            f"retry_count cannot decrease ({event.retry_count} -> {changes['retry_count']})"
        )

    if changes.get("recoverable") is True and event.recoverable is False:
        raise ValueError("An unrecoverable event cannot be made recoverable again")


class WebhookEventStore:
    def __init__(self, session: Session):
        self.session = session

    def get_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        with store_errors(self.session, "get_webhook_event", event_id=event_id):
            stmt = select(WebhookEvent).where(col(WebhookEvent.event_id) == event_id)
            return self.session.exec(stmt).first()

    def list_retryable(self, max_retries: int, limit: int) -> list[WebhookEvent]:
        """Failed, still-recoverable events under the retry ceiling, oldest first."""
        with store_errors(self.session, "list_retryable_webhook_events"):
            stmt = (
                select(WebhookEvent)
                .where(
                    col(WebhookEvent.status) == WebhookEventStatus.FAILED,
                    col(WebhookEvent.recoverable).is_(True),
                    col(WebhookEvent.retry_count) < max_retries,
                )
                .order_by(col(WebhookEvent.created_at).asc(), col(WebhookEvent.id).asc())
                .limit(limit)
            )
            return list(self.session.exec(stmt).all())

    def update(self, pk: int, **changes: Any) -> WebhookEvent:
        """
        Partial update by primary key.

        Raises:
            ValueError: unknown field or an invariant violation
            StoreError: event missing or database failure
        """
        with store_errors(self.session, "update_webhook_event", pk=pk):
            # Validate against the committed row, not a cached copy
            event = self.session.get(WebhookEvent, pk, populate_existing=True)
            if event is None:
                raise StoreError(f"Webhook event {pk} not found")

            validate_changes(event, changes)
            for key, value in changes.items():
                setattr(event, key, value)

            self.session.add(event)
            self.session.commit()
            self.session.refresh(event)
            return event

    # Live ingestion helpers

    def claim(
        self,
        event_id: str,
        event_type: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> tuple[bool, Optional[WebhookEventStatus]]:
        """
        Insert the event as pending if it has never been seen.

        Returns ``(True, None)`` for a fresh claim, otherwise
        ``(False, existing_status)``. A concurrent insert that loses the race
        on the unique event id is reported as an existing pending event.
        """
        existing = self.get_by_event_id(event_id)
        if existing is not None:
            logger.info("Webhook event already seen", event_id=event_id, status=existing.status)
            return False, WebhookEventStatus(existing.status)

        event = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            status=WebhookEventStatus.PENDING,
            payload=payload,
        )
        try:
            self.session.add(event)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("Webhook event claimed by concurrent request", event_id=event_id)
            return False, WebhookEventStatus.PENDING
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"claim_webhook_event failed: {e}") from e

        logger.info("Webhook event claimed", event_id=event_id, event_type=event_type)
        return True, None

    def _require(self, event_id: str) -> WebhookEvent:
        event = self.get_by_event_id(event_id)
        if event is None:
            raise StoreError(f"Webhook event {event_id} not found")
        return event

    def mark_completed(self, event_id: str) -> WebhookEvent:
        """Raises StoreError on failure so the caller can ask the provider to redeliver."""
        event = self._require(event_id)
        return self.update(
            event.id,
            status=WebhookEventStatus.COMPLETED,
            error_message=None,
            completed_at=utc_now(),
        )

    def mark_failed(self, event_id: str, error_message: str) -> WebhookEvent:
        event = self._require(event_id)
        return self.update(
            event.id,
            status=WebhookEventStatus.FAILED,
            error_message=error_message[:1000],
        )

    def mark_unhandled(self, event_id: str, event_type: str) -> WebhookEvent:
        event = self._require(event_id)
        return self.update(
            event.id,
            status=WebhookEventStatus.UNRECOVERABLE,
            recoverable=False,
            error_message=f"Unhandled event type: {event_type}",
            completed_at=utc_now(),
        )


__all__ = ["WebhookEventStore", "validate_changes", "ALLOWED_TRANSITIONS"]
