"""
Shared webhook event processor.

Used by live ingestion and by the recovery sweep, so both paths apply events
with identical logic. Every handled event re-fetches the subscription from
the provider and syncs to that, never to the copy inside the event; replaying
an event therefore converges on current provider truth and the second
application is a no-op.
"""

from typing import Any, Optional

from app.core.errors import EventProcessingError, NotFoundError
from app.core.logging_config import get_logger
from app.services.billing_provider import BillingProvider, ProviderEvent
from app.services.subscription_store import SubscriptionStore
from app.services.subscription_sync import SubscriptionSyncer

logger = get_logger(__name__)

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
}

INVOICE_EVENTS = {
    "invoice.paid",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
    "invoice_payment.paid",
    "invoice_payment.payment_succeeded",
    "invoice_payment.payment_failed",
}

CHECKOUT_EVENTS = {"checkout.session.completed"}

SCHEDULE_EVENTS = {"subscription_schedule.completed"}

HANDLED_EVENTS = SUBSCRIPTION_EVENTS | INVOICE_EVENTS | CHECKOUT_EVENTS | SCHEDULE_EVENTS


def _ref_id(value: Any) -> Optional[str]:
    """Expanded objects come through as dicts, unexpanded ones as ids."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def resolve_subscription_id(event: ProviderEvent) -> Optional[str]:
    obj = event.data_object
    if event.type in SUBSCRIPTION_EVENTS:
        return obj.get("id")

    subscription = _ref_id(obj.get("subscription"))
    if subscription:
        return subscription

    # Newer invoice payloads nest the subscription under parent details
    parent = obj.get("parent") or {}
    details = parent.get("subscription_details") or {}
    subscription = _ref_id(details.get("subscription"))
    if subscription:
        return subscription

    invoice = obj.get("invoice")
    if isinstance(invoice, dict):
        return _ref_id(invoice.get("subscription"))
    return None


def _metadata_user_id(obj: dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("user_id") or metadata.get("userId") or obj.get("client_reference_id")


class EventProcessor:
    def __init__(
        self,
        provider: BillingProvider,
        syncer: SubscriptionSyncer,
        subscriptions: SubscriptionStore,
    ):
        self.provider = provider
        self.syncer = syncer
        self.subscriptions = subscriptions

    def process(self, event: ProviderEvent) -> bool:
        """
        Apply one event to local state.

        Returns False for event types this processor does not handle.

        Raises:
            EventProcessingError: no user could be resolved for the subscription
            ProviderError: the provider fetch failed for a reason other than not-found
            StoreError: local persistence failed
        """
        if event.type not in HANDLED_EVENTS:
            logger.info("Unhandled event type", event_id=event.id, event_type=event.type)
            return False

        subscription_id = resolve_subscription_id(event)
        if not subscription_id:
            # One-off payments and invoices carry no subscription
            logger.info("Event has no subscription, nothing to sync", event_id=event.id, event_type=event.type)
            return True

        local = self.subscriptions.get(subscription_id)

        try:
            snapshot = self.provider.retrieve_subscription(subscription_id)
        except NotFoundError:
            logger.warning(
                "Subscription gone at provider, canceling locally",
                event_id=event.id,
                subscription_id=subscription_id,
            )
            self.syncer.mark_canceled(local.user_id if local else None, subscription_id)
            return True

        user_id = (local.user_id if local else None) or snapshot.user_id or _metadata_user_id(event.data_object)
        if not user_id:
            raise EventProcessingError(
                f"No user found for subscription {subscription_id} (event {event.id})"
            )

        outcome = self.syncer.sync_from_provider(user_id, snapshot)
        if event.type in SCHEDULE_EVENTS:
            self.syncer.clear_scheduled_change(subscription_id)

        logger.info(
            "Event processed",
            event_id=event.id,
            event_type=event.type,
            subscription_id=subscription_id,
            changed=outcome.changed,
        )
        return True


__all__ = ["EventProcessor", "HANDLED_EVENTS", "resolve_subscription_id"]
