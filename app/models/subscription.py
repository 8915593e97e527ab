"""
Local subscription record, kept consistent with the billing provider.

Rows are written only by the SubscriptionSyncer (reconciliation, expiration
check, live webhook processing). The provider is always the source of truth.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from app.core.typing import utc_now


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"


# Statuses worth reconciling; terminal ones are left alone.
LIVE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
)


class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"

    id: str = Field(primary_key=True)  # provider subscription id
    user_id: str = Field(index=True)
    customer_id: Optional[str] = Field(default=None, nullable=True, index=True)
    status: SubscriptionStatus = Field(index=True)
    plan_id: Optional[str] = Field(default=None, nullable=True)  # provider price id

    current_period_start: Optional[datetime] = Field(default=None, nullable=True)
    current_period_end: Optional[datetime] = Field(default=None, nullable=True, index=True)
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None, nullable=True)
    trial_end: Optional[datetime] = Field(default=None, nullable=True)

    # Pending downgrade, applied by the provider at the next renewal
    scheduled_plan_id: Optional[str] = Field(default=None, nullable=True)
    scheduled_change_date: Optional[datetime] = Field(default=None, nullable=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["Subscription", "SubscriptionStatus", "LIVE_STATUSES"]
