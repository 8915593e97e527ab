"""
Stripe adapter for the BillingProvider protocol.

All Stripe SDK exceptions are classified here into the provider error
taxonomy; nothing outside this module imports ``stripe`` error types.
"""
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from app.core.config import settings
from app.core.errors import (
    NotFoundError,
    ProviderError,
    ProviderErrorKind,
    TransientProviderError,
)
from app.core.logging_config import get_logger
from app.models.subscription import SubscriptionStatus
from app.services.billing_provider import ProviderEvent, ProviderSnapshot

logger = get_logger(__name__)


def get_stripe_client() -> stripe.StripeClient:
    """Get configured Stripe client."""
    return stripe.StripeClient(
        settings.STRIPE_SECRET_KEY,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    )


def classify_stripe_error(exc: Exception) -> ProviderError:
    """Map a Stripe SDK exception onto the provider error taxonomy."""
    message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__
    http_status = getattr(exc, "http_status", None)
    code = getattr(exc, "code", None)

    if http_status == 404 or code == "resource_missing" or message.startswith("No such"):
        return NotFoundError(message)

    if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError)):
        return TransientProviderError(message)
    if http_status is not None and (http_status == 429 or http_status >= 500):
        return TransientProviderError(message)

    return ProviderError(message, kind=ProviderErrorKind.OTHER)


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def snapshot_from_stripe(subscription: dict[str, Any]) -> ProviderSnapshot:
    """
    Build a ProviderSnapshot from a Stripe subscription object.

    Newer API versions moved the billing period onto the subscription items,
    so the first item is used when the subscription itself has no period.
    """
    raw_status = subscription.get("status")
    try:
        status = SubscriptionStatus(raw_status)
    except ValueError:
        raise ProviderError(f"Unknown subscription status from Stripe: {raw_status!r}")

    item = _first_item(subscription)
    price = item.get("price") or {}
    customer = subscription.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    return ProviderSnapshot(
        id=subscription["id"],
        status=status,
        customer_id=customer,
        current_price_id=price.get("id"),
        current_period_start=_timestamp(
            subscription.get("current_period_start") or item.get("current_period_start")
        ),
        current_period_end=_timestamp(
            subscription.get("current_period_end") or item.get("current_period_end")
        ),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=_timestamp(subscription.get("canceled_at")),
        trial_end=_timestamp(subscription.get("trial_end")),
        metadata=dict(subscription.get("metadata") or {}),
    )


def event_from_stripe(event: dict[str, Any]) -> ProviderEvent:
    data = event.get("data") or {}
    return ProviderEvent(
        id=event["id"],
        type=event["type"],
        data_object=_as_dict(data.get("object")),
        created=_timestamp(event.get("created")),
    )


class StripeBillingProvider:
    """BillingProvider backed by ``stripe.StripeClient``."""

    def __init__(self, client: stripe.StripeClient):
        self.client = client

    def retrieve_subscription(self, subscription_id: str) -> ProviderSnapshot:
        try:
            subscription = self.client.subscriptions.retrieve(subscription_id)
        except stripe.StripeError as e:
            error = classify_stripe_error(e)
            logger.warning(
                "Stripe subscription fetch failed",
                subscription_id=subscription_id,
                kind=error.kind.value,
                error=error.message,
            )
            raise error from e
        return snapshot_from_stripe(_as_dict(subscription))

    def retrieve_event(self, event_id: str) -> ProviderEvent:
        try:
            event = self.client.events.retrieve(event_id)
        except stripe.StripeError as e:
            error = classify_stripe_error(e)
            logger.warning(
                "Stripe event fetch failed",
                event_id=event_id,
                kind=error.kind.value,
                error=error.message,
            )
            raise error from e
        return event_from_stripe(_as_dict(event))


def construct_webhook_event(payload: bytes, signature: str) -> ProviderEvent:
    """
    Verify a webhook delivery signature and parse the event.

    Raises:
        stripe.SignatureVerificationError: bad or missing signature
        ValueError: payload is not valid JSON
    """
    event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    return event_from_stripe(_as_dict(event))


def get_billing_provider() -> StripeBillingProvider:
    """Build the provider adapter from settings."""
    return StripeBillingProvider(get_stripe_client())


__all__ = [
    "StripeBillingProvider",
    "classify_stripe_error",
    "snapshot_from_stripe",
    "event_from_stripe",
    "construct_webhook_event",
    "get_billing_provider",
    "get_stripe_client",
]
