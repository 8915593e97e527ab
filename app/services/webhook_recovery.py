"""
Webhook Recovery Sweep

Retries inbound events that failed during live delivery. Each event is
re-fetched from the provider by id and replayed through the same
EventProcessor live ingestion uses.

Outcomes per event:
    success     -> completed, retry_count + 1
    not found   -> unrecoverable immediately (the provider no longer has it)
    other error -> retry_count + 1; unrecoverable once retry_count >= max_retries

No pacing between events: volume is low and each event costs at most two
provider calls.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from app.core.config import settings
from app.core.errors import NotFoundError, ReconciliationError, capture_exception
from app.core.logging_config import get_logger
from app.core.pacing import NoopPacer, Pacer
from app.core.typing import utc_now
from app.models.sync_run import SyncRunStatus, SyncRunType
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services.billing_provider import BillingProvider
from app.services.event_processor import EventProcessor
from app.services.sync_runs import SyncRunRecorder
from app.services.webhook_events import WebhookEventStore

logger = get_logger(__name__)

NOT_FOUND_MESSAGE = "Event not found in Stripe (expired or invalid)"


@dataclass
class RecoveryResult:
    success: bool = True
    processed: int = 0
    recovered: int = 0
    unrecoverable: int = 0
    sync_run_id: Optional[int] = None
    error: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        if not self.success:
            return {
                "error": self.error,
                "processed": self.processed,
                "recovered": self.recovered,
                "unrecoverable": self.unrecoverable,
            }
        return {
            "success": True,
            "processed": self.processed,
            "recovered": self.recovered,
            "unrecoverable": self.unrecoverable,
            "syncRunId": self.sync_run_id,
        }


class WebhookRecoverySweep:
    def __init__(
        self,
        provider: BillingProvider,
        events: WebhookEventStore,
        processor: EventProcessor,
        recorder: SyncRunRecorder,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        pacer: Optional[Pacer] = None,
    ):
        self.provider = provider
        self.events = events
        self.processor = processor
        self.recorder = recorder
        self.batch_size = batch_size if batch_size is not None else settings.WEBHOOK_RECOVERY_BATCH_SIZE
        self.max_retries = max_retries if max_retries is not None else settings.WEBHOOK_MAX_RETRIES
        self.pacer = pacer or NoopPacer()

    def run(self) -> RecoveryResult:
        result = RecoveryResult()

        try:
            result.sync_run_id = self.recorder.create(SyncRunType.WEBHOOK_RECOVERY)
        except ReconciliationError as e:
            capture_exception(e, context={"job": SyncRunType.WEBHOOK_RECOVERY.value})
            result.success = False
            result.error = f"Failed to create sync run: {e}"
            return result

        with structlog.contextvars.bound_contextvars(
            job=SyncRunType.WEBHOOK_RECOVERY.value,
            sync_run_id=result.sync_run_id,
        ):
            try:
                self._sweep(result)
            except Exception as e:
                capture_exception(e, context={"stage": "webhook_recovery"})
                result.success = False
                result.error = str(e) or type(e).__name__
                self.recorder.complete_quietly(
                    result.sync_run_id,
                    SyncRunStatus.FAILED,
                    records_processed=result.processed,
                    records_fixed=result.recovered,
                    error_message=result.error,
                    metadata=self._metadata(result),
                )

        return result

    def _sweep(self, result: RecoveryResult) -> None:
        failed_events = self.events.list_retryable(self.max_retries, self.batch_size)

        if not failed_events:
            logger.info("No failed webhook events to retry")
        else:
            logger.info("Retrying failed webhook events", count=len(failed_events))

        for event in failed_events:
            result.processed += 1
            event_id = event.event_id
            try:
                self._recover_one(event, result)
            except Exception as e:
                # One event whose bookkeeping is rejected never ends the batch
                capture_exception(e, context={"event_id": event_id, "operation": "recover_webhook_event"})
            finally:
                self.pacer.pace()

        self.recorder.complete(
            result.sync_run_id,
            SyncRunStatus.COMPLETED,
            records_processed=result.processed,
            records_fixed=result.recovered,
            metadata=self._metadata(result),
        )
        logger.info(
            "Webhook recovery complete",
            processed=result.processed,
            recovered=result.recovered,
            unrecoverable=result.unrecoverable,
        )

    def _recover_one(self, event: WebhookEvent, result: RecoveryResult) -> None:
        pk, event_id, retry_count = event.id, event.event_id, event.retry_count
        attempt = retry_count + 1
        log = logger.bind(event_id=event_id, attempt=attempt, max_retries=self.max_retries)
        log.info("Retrying webhook event")

        try:
            provider_event = self.provider.retrieve_event(event_id)
            self.processor.process(provider_event)
        except NotFoundError:
            log.warning("Webhook event not found at provider, marking unrecoverable")
            self._record(
                result,
                pk,
                unrecoverable=True,
                status=WebhookEventStatus.UNRECOVERABLE,
                recoverable=False,
                error_message=NOT_FOUND_MESSAGE,
                last_retry_at=utc_now(),
            )
            return
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            give_up = attempt >= self.max_retries
            capture_exception(
                e,
                context={"event_id": event_id, "attempt": attempt, "give_up": give_up},
                level="warning",
            )
            changes: dict[str, Any] = {
                "retry_count": attempt,
                "last_retry_at": utc_now(),
                "error_message": message[:1000],
            }
            if give_up:
                changes["status"] = WebhookEventStatus.UNRECOVERABLE
                changes["recoverable"] = False
            self._record(result, pk, unrecoverable=give_up, **changes)
            return

        now = utc_now()
        self._record(
            result,
            pk,
            recovered=True,
            status=WebhookEventStatus.COMPLETED,
            retry_count=attempt,
            last_retry_at=now,
            completed_at=now,
            error_message=None,
        )
        log.info("Webhook event recovered")

    def _record(
        self,
        result: RecoveryResult,
        pk: int,
        recovered: bool = False,
        unrecoverable: bool = False,
        **changes: Any,
    ) -> None:
        """Write retry bookkeeping; a failed write is logged and the event is left for the next pass."""
        try:
            self.events.update(pk, **changes)
        except ReconciliationError as e:
            capture_exception(e, context={"operation": "update_webhook_event", "pk": pk})
            return
        if recovered:
            result.recovered += 1
        if unrecoverable:
            result.unrecoverable += 1

    @staticmethod
    def _metadata(result: RecoveryResult) -> dict[str, int]:
        return {"recovered": result.recovered, "unrecoverable": result.unrecoverable}


__all__ = ["WebhookRecoverySweep", "RecoveryResult", "NOT_FOUND_MESSAGE"]
