"""
Expiration Check Sweep

Hourly safety net for missed renewal or cancellation webhooks: finds active
subscriptions whose period already ended and asks the provider what happened.

    provider not active -> full sync (renewal failed or subscription ended)
    still active        -> refresh the billing period (renewal succeeded)
    not found           -> cancel locally
    other error         -> logged, retried on the next run
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from app.core.config import settings
from app.core.errors import NotFoundError, ReconciliationError, capture_exception
from app.core.logging_config import get_logger
from app.core.pacing import Pacer
from app.core.typing import utc_now
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.sync_run import SyncRunStatus, SyncRunType
from app.services.billing_provider import BillingProvider
from app.services.subscription_store import SubscriptionStore
from app.services.subscription_sync import SubscriptionSyncer
from app.services.sync_runs import SyncRunRecorder

logger = get_logger(__name__)


@dataclass
class ExpirationCheckResult:
    success: bool = True
    processed: int = 0
    fixed: int = 0
    sync_run_id: Optional[int] = None
    error: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        if not self.success:
            return {"error": self.error, "processed": self.processed, "fixed": self.fixed}
        return {
            "success": True,
            "processed": self.processed,
            "fixed": self.fixed,
            "syncRunId": self.sync_run_id,
        }


class ExpirationCheckSweep:
    def __init__(
        self,
        provider: BillingProvider,
        subscriptions: SubscriptionStore,
        syncer: SubscriptionSyncer,
        recorder: SyncRunRecorder,
        pacer: Pacer,
        batch_size: Optional[int] = None,
    ):
        self.provider = provider
        self.subscriptions = subscriptions
        self.syncer = syncer
        self.recorder = recorder
        self.pacer = pacer
        self.batch_size = batch_size if batch_size is not None else settings.RECONCILE_BATCH_SIZE

    def run(self) -> ExpirationCheckResult:
        result = ExpirationCheckResult()

        try:
            result.sync_run_id = self.recorder.create(SyncRunType.EXPIRATION_CHECK)
        except ReconciliationError as e:
            capture_exception(e, context={"job": SyncRunType.EXPIRATION_CHECK.value})
            result.success = False
            result.error = f"Failed to create sync run: {e}"
            return result

        with structlog.contextvars.bound_contextvars(
            job=SyncRunType.EXPIRATION_CHECK.value,
            sync_run_id=result.sync_run_id,
        ):
            try:
                self._sweep(result)
            except Exception as e:
                capture_exception(e, context={"stage": "expiration_check"})
                result.success = False
                result.error = str(e) or type(e).__name__
                self.recorder.complete_quietly(
                    result.sync_run_id,
                    SyncRunStatus.FAILED,
                    records_processed=result.processed,
                    records_fixed=result.fixed,
                    error_message=result.error,
                )

        return result

    def _sweep(self, result: ExpirationCheckResult) -> None:
        expired = self.subscriptions.list_expired(utc_now(), limit=self.batch_size)
        logger.info("Checking expired subscriptions", count=len(expired))

        for record in expired:
            result.processed += 1
            sub_id = record.id
            try:
                self._check_one(record)
                result.fixed += 1
            except Exception as e:
                capture_exception(e, context={"subscription_id": sub_id}, level="warning")
            finally:
                self.pacer.pace()

        self.recorder.complete(
            result.sync_run_id,
            SyncRunStatus.COMPLETED,
            records_processed=result.processed,
            records_fixed=result.fixed,
        )
        logger.info("Expiration check complete", processed=result.processed, fixed=result.fixed)

    def _check_one(self, record: Subscription) -> None:
        sub_id, user_id = record.id, record.user_id
        try:
            snapshot = self.provider.retrieve_subscription(sub_id)
        except NotFoundError:
            logger.warning("Expired subscription missing at provider", subscription_id=sub_id)
            self.syncer.mark_canceled(user_id, sub_id)
            return

        if snapshot.status != SubscriptionStatus.ACTIVE:
            logger.info(
                "Expired subscription changed status at provider",
                subscription_id=sub_id,
                status=snapshot.status,
            )
            self.syncer.sync_from_provider(user_id, snapshot)
            return

        self.syncer.update_period(sub_id, snapshot)


__all__ = ["ExpirationCheckSweep", "ExpirationCheckResult"]
