"""
Wiring for the sweeps: builds each one from a session plus its collaborators.

Shared by the HTTP routes and the scheduler so both run identical objects.
"""
from typing import Optional

from sqlmodel import Session

from app.core.pacing import Pacer, default_pacer
from app.services.billing_provider import BillingProvider
from app.services.event_processor import EventProcessor
from app.services.expiration_check import ExpirationCheckSweep
from app.services.reconciliation import FullReconciliationSweep
from app.services.stripe_provider import get_billing_provider
from app.services.subscription_store import SubscriptionStore
from app.services.subscription_sync import DependentRecalculator, SubscriptionSyncer
from app.services.sync_runs import SyncRunRecorder
from app.services.webhook_events import WebhookEventStore
from app.services.webhook_recovery import WebhookRecoverySweep


def build_event_processor(
    session: Session,
    provider: Optional[BillingProvider] = None,
    recalculator: Optional[DependentRecalculator] = None,
) -> EventProcessor:
    provider = provider or get_billing_provider()
    subscriptions = SubscriptionStore(session)
    return EventProcessor(provider, SubscriptionSyncer(subscriptions, recalculator), subscriptions)


def build_reconciliation_sweep(
    session: Session,
    provider: Optional[BillingProvider] = None,
    pacer: Optional[Pacer] = None,
) -> FullReconciliationSweep:
    provider = provider or get_billing_provider()
    subscriptions = SubscriptionStore(session)
    return FullReconciliationSweep(
        provider=provider,
        subscriptions=subscriptions,
        syncer=SubscriptionSyncer(subscriptions),
        recorder=SyncRunRecorder(session),
        pacer=pacer or default_pacer(),
    )


def build_recovery_sweep(
    session: Session,
    provider: Optional[BillingProvider] = None,
) -> WebhookRecoverySweep:
    provider = provider or get_billing_provider()
    return WebhookRecoverySweep(
        provider=provider,
        events=WebhookEventStore(session),
        processor=build_event_processor(session, provider),
        recorder=SyncRunRecorder(session),
    )


def build_expiration_sweep(
    session: Session,
    provider: Optional[BillingProvider] = None,
    pacer: Optional[Pacer] = None,
) -> ExpirationCheckSweep:
    provider = provider or get_billing_provider()
    subscriptions = SubscriptionStore(session)
    return ExpirationCheckSweep(
        provider=provider,
        subscriptions=subscriptions,
        syncer=SubscriptionSyncer(subscriptions),
        recorder=SyncRunRecorder(session),
        pacer=pacer or default_pacer(),
    )


__all__ = [
    "build_event_processor",
    "build_reconciliation_sweep",
    "build_recovery_sweep",
    "build_expiration_sweep",
]
