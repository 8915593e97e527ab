"""
Provider-neutral view of the billing system.

Sweeps and the event processor only ever see these types and the
``ProviderError`` taxonomy from ``app.core.errors``; SDK specifics live in the
adapters (see ``app.services.stripe_provider``).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from app.models.subscription import SubscriptionStatus


@dataclass(frozen=True)
class ProviderSnapshot:
    """Point-in-time read of a subscription at the provider. Never persisted."""

    id: str
    status: SubscriptionStatus
    customer_id: Optional[str] = None
    current_price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("user_id") or self.metadata.get("userId")


@dataclass(frozen=True)
class ProviderEvent:
    """Canonical event payload as the provider currently reports it."""

    id: str
    type: str
    data_object: dict[str, Any] = field(default_factory=dict)
    created: Optional[datetime] = None


class BillingProvider(Protocol):
    """
    Read-only billing provider client.

    Implementations raise ``NotFoundError`` when the record is gone,
    ``TransientProviderError`` for retryable failures and ``ProviderError``
    for anything else. They never leak SDK exception types.
    """

    def retrieve_subscription(self, subscription_id: str) -> ProviderSnapshot:
        ...

    def retrieve_event(self, event_id: str) -> ProviderEvent:
        ...


__all__ = ["ProviderSnapshot", "ProviderEvent", "BillingProvider"]
