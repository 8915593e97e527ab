"""
Subscription Syncer

The only writer of local subscription state. The provider snapshot always
wins: every field it reports overwrites the local value. Writes happen only
when something actually changed, so replaying the same snapshot is a no-op.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from app.core.errors import ErrorHandler
from app.core.logging_config import get_logger
from app.core.typing import as_utc
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.billing_provider import ProviderSnapshot
from app.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)

# Fields copied verbatim from the snapshot
_SNAPSHOT_FIELDS = {
    "status": "status",
    "plan_id": "current_price_id",
    "customer_id": "customer_id",
    "current_period_start": "current_period_start",
    "current_period_end": "current_period_end",
    "cancel_at_period_end": "cancel_at_period_end",
    "canceled_at": "canceled_at",
    "trial_end": "trial_end",
}


class DependentRecalculator(Protocol):
    """Anything derived from a subscription (credit allocation, entitlements)."""

    def subscription_changed(
        self,
        user_id: str,
        previous: Optional[dict[str, Any]],
        current: Subscription,
    ) -> None:
        ...


class LoggingRecalculator:
    """Default recalculator: records the change and does nothing else."""

    def subscription_changed(
        self,
        user_id: str,
        previous: Optional[dict[str, Any]],
        current: Subscription,
    ) -> None:
        logger.info(
            "Dependent recalculation requested",
            user_id=user_id,
            subscription_id=current.id,
            previous_status=(previous or {}).get("status"),
            status=current.status,
            plan_id=current.plan_id,
        )


@dataclass
class SyncOutcome:
    record: Subscription
    changed: bool
    previous_status: Optional[SubscriptionStatus] = None
    previous_plan_id: Optional[str] = None


def _same(a: Any, b: Any) -> bool:
    if hasattr(a, "tzinfo") or hasattr(b, "tzinfo"):
        return as_utc(a) == as_utc(b)
    return getattr(a, "value", a) == getattr(b, "value", b)


class SubscriptionSyncer:
    def __init__(
        self,
        store: SubscriptionStore,
        recalculator: Optional[DependentRecalculator] = None,
    ):
        self.store = store
        self.recalculator = recalculator or LoggingRecalculator()

    def sync_from_provider(self, user_id: str, snapshot: ProviderSnapshot) -> SyncOutcome:
        """
        Make the local record match ``snapshot``.

        Creates the record if it does not exist yet. A pending scheduled plan
        change is cleared once the provider reports that plan as active.
        """
        record = self.store.get(snapshot.id)

        if record is None:
            record = Subscription(id=snapshot.id, user_id=user_id, status=snapshot.status)
            for local_field, snapshot_field in _SNAPSHOT_FIELDS.items():
                setattr(record, local_field, getattr(snapshot, snapshot_field))
            record = self.store.upsert(record)
            logger.info(
                "Subscription created from provider",
                subscription_id=record.id,
                user_id=user_id,
                status=record.status,
            )
            self._notify(user_id, None, record)
            return SyncOutcome(record=record, changed=True)

        previous = {
            "status": record.status,
            "plan_id": record.plan_id,
        }
        changes: dict[str, Any] = {}
        for local_field, snapshot_field in _SNAPSHOT_FIELDS.items():
            new_value = getattr(snapshot, snapshot_field)
            if not _same(getattr(record, local_field), new_value):
                changes[local_field] = new_value

        if record.scheduled_plan_id and record.scheduled_plan_id == snapshot.current_price_id:
            changes["scheduled_plan_id"] = None
            changes["scheduled_change_date"] = None

        if not changes:
            logger.debug("Subscription already in sync", subscription_id=record.id)
            return SyncOutcome(
                record=record,
                changed=False,
                previous_status=record.status,
                previous_plan_id=record.plan_id,
            )

        for key, value in changes.items():
            setattr(record, key, value)
        record = self.store.upsert(record)

        logger.info(
            "Subscription synced from provider",
            subscription_id=record.id,
            user_id=record.user_id,
            changed_fields=sorted(changes),
            previous_status=previous["status"],
            status=record.status,
        )
        if "status" in changes or "plan_id" in changes:
            self._notify(record.user_id, previous, record)

        return SyncOutcome(
            record=record,
            changed=True,
            previous_status=previous["status"],
            previous_plan_id=previous["plan_id"],
        )

    def update_period(self, subscription_id: str, snapshot: ProviderSnapshot) -> Optional[Subscription]:
        """Refresh only the billing period (renewal already happened at the provider)."""
        record = self.store.get(subscription_id)
        if record is None:
            return None

        if _same(record.current_period_start, snapshot.current_period_start) and _same(
            record.current_period_end, snapshot.current_period_end
        ):
            return record

        record.current_period_start = snapshot.current_period_start
        record.current_period_end = snapshot.current_period_end
        record = self.store.upsert(record)
        logger.info(
            "Subscription period refreshed",
            subscription_id=subscription_id,
            current_period_end=record.current_period_end,
        )
        return record

    def clear_scheduled_change(self, subscription_id: str) -> Optional[Subscription]:
        record = self.store.get(subscription_id)
        if record is None or (record.scheduled_plan_id is None and record.scheduled_change_date is None):
            return record

        record.scheduled_plan_id = None
        record.scheduled_change_date = None
        record = self.store.upsert(record)
        logger.info("Scheduled plan change cleared", subscription_id=subscription_id)
        return record

    def mark_canceled(self, user_id: Optional[str], subscription_id: str) -> Optional[Subscription]:
        """Cancel locally without contacting the provider. Idempotent."""
        existing = self.store.get(subscription_id)
        if existing is None:
            logger.warning("Cannot cancel unknown subscription", subscription_id=subscription_id, user_id=user_id)
            return None
        if existing.status == SubscriptionStatus.CANCELED:
            return existing

        previous = {"status": existing.status, "plan_id": existing.plan_id}
        record = self.store.mark_canceled(subscription_id)
        if record is not None:
            self._notify(user_id or record.user_id, previous, record)
        return record

    def _notify(self, user_id: str, previous: Optional[dict[str, Any]], record: Subscription) -> None:
        with ErrorHandler(
            "dependent_recalculation",
            context={"user_id": user_id, "subscription_id": record.id},
        ):
            self.recalculator.subscription_changed(user_id, previous, record)


__all__ = [
    "SubscriptionSyncer",
    "SyncOutcome",
    "DependentRecalculator",
    "LoggingRecalculator",
]
