"""
Model for tracking inbound webhook events: idempotency for live delivery
and retry bookkeeping for the recovery sweep.
"""
from typing import Any, Optional
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index
from sqlmodel import Column, Field, SQLModel

from app.core.typing import utc_now


class WebhookEventStatus(str, Enum):
    PENDING = "pending"  # claimed by live delivery, processing in flight
    FAILED = "failed"
    COMPLETED = "completed"
    UNRECOVERABLE = "unrecoverable"


class WebhookEvent(SQLModel, table=True):
    """
    One row per provider event id.

    Providers retry failed deliveries, so each event is claimed once; events
    that fail stay ``failed`` + ``recoverable`` until the recovery sweep either
    completes them or gives up. Transitions only move forward:
    pending -> completed | failed | unrecoverable, failed -> completed | unrecoverable.
    """
    __tablename__ = "webhook_event"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Event identification
    event_id: str = Field(unique=True, index=True)  # provider event id, e.g. "evt_..."
    event_type: str = Field(index=True)  # e.g. "customer.subscription.updated"
    source: str = Field(default="stripe")

    # Processing status
    status: WebhookEventStatus = Field(default=WebhookEventStatus.PENDING, index=True)
    recoverable: bool = Field(default=True)
    retry_count: int = Field(default=0)
    last_retry_at: Optional[datetime] = Field(default=None, nullable=True)
    error_message: Optional[str] = Field(default=None, nullable=True)

    # Raw payload kept for debugging only; recovery always re-fetches from the provider
    payload: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    completed_at: Optional[datetime] = Field(default=None, nullable=True)

    __table_args__ = (
        # Retryable query: status + recoverable + retry_count, oldest first
        Index("ix_webhook_event_retryable", "status", "recoverable", "retry_count", "created_at"),
    )


__all__ = ["WebhookEvent", "WebhookEventStatus"]
