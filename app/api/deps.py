import hmac
from typing import Optional

from fastapi import Depends, Header
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import AuthorizationError
from app.core.logging_config import get_logger
from app.core.pacing import Pacer, default_pacer
from app.db import get_session
from app.services.billing_provider import BillingProvider
from app.services.event_processor import EventProcessor
from app.services.expiration_check import ExpirationCheckSweep
from app.services.reconciliation import FullReconciliationSweep
from app.services.stripe_provider import get_billing_provider
from app.services.sweeps import (
    build_event_processor,
    build_expiration_sweep,
    build_reconciliation_sweep,
    build_recovery_sweep,
)
from app.services.sync_runs import SyncRunRecorder
from app.services.webhook_events import WebhookEventStore
from app.services.webhook_recovery import WebhookRecoverySweep

logger = get_logger(__name__)

# Header the scheduler sends with every trigger
CRON_SECRET_HEADER = "x-cron-secret"


def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None, alias=CRON_SECRET_HEADER),
) -> None:
    """
    Reject the request unless the shared secret matches exactly.

    Runs as a router-level dependency, so nothing else (no session, no
    store access) is resolved for a rejected call. An unset CRON_SECRET
    rejects everything.
    """
    expected = settings.CRON_SECRET
    if not expected or not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Rejected cron trigger", has_header=x_cron_secret is not None)
        raise AuthorizationError("Invalid cron secret")


def get_provider() -> BillingProvider:
    return get_billing_provider()


def get_pacer() -> Pacer:
    return default_pacer()


def get_reconciliation_sweep(
    session: Session = Depends(get_session),
    provider: BillingProvider = Depends(get_provider),
    pacer: Pacer = Depends(get_pacer),
) -> FullReconciliationSweep:
    return build_reconciliation_sweep(session, provider, pacer)


def get_recovery_sweep(
    session: Session = Depends(get_session),
    provider: BillingProvider = Depends(get_provider),
) -> WebhookRecoverySweep:
    return build_recovery_sweep(session, provider)


def get_expiration_sweep(
    session: Session = Depends(get_session),
    provider: BillingProvider = Depends(get_provider),
    pacer: Pacer = Depends(get_pacer),
) -> ExpirationCheckSweep:
    return build_expiration_sweep(session, provider, pacer)


def get_event_processor(
    session: Session = Depends(get_session),
    provider: BillingProvider = Depends(get_provider),
) -> EventProcessor:
    return build_event_processor(session, provider)


def get_webhook_event_store(session: Session = Depends(get_session)) -> WebhookEventStore:
    return WebhookEventStore(session)


def get_sync_run_recorder(session: Session = Depends(get_session)) -> SyncRunRecorder:
    return SyncRunRecorder(session)
