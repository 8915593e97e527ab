"""
Full Reconciliation Sweep

Scans live subscriptions (active, trialing, past_due) in one bounded batch,
compares each against the provider and repairs drift through the syncer.

Per invocation:
    1. create a SyncRun (abort if that fails: no unaudited sweeps)
    2. count and load the eligible batch (capped at ``batch_size``)
    3. for each record, sequentially: fetch -> detect -> fix, then pace
    4. complete the SyncRun with counts and the issue list

A failure on one record is recorded as an issue and the loop moves on.
Only run-level failures (the eligibility query, the SyncRun itself) end the
invocation early; the run is then marked failed with whatever counts exist.

There is no cursor between invocations. With more eligible records than
``batch_size`` the response carries ``has_more`` and the scheduler's next
invocation starts from the same filtered set again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog

from app.core.config import settings
from app.core.errors import NotFoundError, ReconciliationError, capture_exception
from app.core.logging_config import get_logger
from app.core.pacing import Pacer
from app.models.subscription import LIVE_STATUSES, Subscription
from app.models.sync_run import SyncRunStatus, SyncRunType
from app.services.billing_provider import BillingProvider
from app.services.discrepancy import detect
from app.services.subscription_store import SubscriptionStore
from app.services.subscription_sync import SubscriptionSyncer
from app.services.sync_runs import SyncRunRecorder

logger = get_logger(__name__)


class IssueAction(str, Enum):
    AUTO_FIXED = "auto-fixed"
    MARKED_CANCELED = "marked-canceled"
    FAILED = "failed"


@dataclass
class ReconciliationIssue:
    sub_id: str
    user_id: str
    issue: str
    action: IssueAction

    def to_dict(self) -> dict[str, str]:
        return {
            "subId": self.sub_id,
            "userId": self.user_id,
            "issue": self.issue,
            "action": self.action.value,
        }


@dataclass
class ReconciliationResult:
    batch_size: int
    success: bool = True
    processed: int = 0
    discrepancies: int = 0
    fixed: int = 0
    issues: list[ReconciliationIssue] = field(default_factory=list)
    has_more: bool = False
    total_subscriptions: int = 0
    message: str = ""
    sync_run_id: Optional[int] = None
    error: Optional[str] = None

    def issue_dicts(self) -> list[dict[str, str]]:
        return [issue.to_dict() for issue in self.issues]

    def to_response(self) -> dict[str, Any]:
        if not self.success:
            return {
                "error": self.error,
                "processed": self.processed,
                "discrepancies": self.discrepancies,
                "fixed": self.fixed,
                "issues": self.issue_dicts(),
            }
        return {
            "success": True,
            "processed": self.processed,
            "discrepancies": self.discrepancies,
            "fixed": self.fixed,
            "issues": self.issue_dicts(),
            "syncRunId": self.sync_run_id,
            "hasMore": self.has_more,
            "totalSubscriptions": self.total_subscriptions,
            "batchSize": self.batch_size,
            "message": self.message,
        }


def batch_message(batch_size: int, remaining: int) -> str:
    if remaining > 0:
        return f"Processed batch of {batch_size}. Re-run to process remaining {remaining} subscriptions."
    return "All subscriptions processed"


class FullReconciliationSweep:
    def __init__(
        self,
        provider: BillingProvider,
        subscriptions: SubscriptionStore,
        syncer: SubscriptionSyncer,
        recorder: SyncRunRecorder,
        pacer: Pacer,
        batch_size: Optional[int] = None,
        tolerance_hours: Optional[float] = None,
    ):
        self.provider = provider
        self.subscriptions = subscriptions
        self.syncer = syncer
        self.recorder = recorder
        self.pacer = pacer
        self.batch_size = batch_size if batch_size is not None else settings.RECONCILE_BATCH_SIZE
        self.tolerance_hours = (
            tolerance_hours if tolerance_hours is not None else settings.RECONCILE_PERIOD_TOLERANCE_HOURS
        )

    def run(self) -> ReconciliationResult:
        result = ReconciliationResult(batch_size=self.batch_size)

        try:
            result.sync_run_id = self.recorder.create(SyncRunType.FULL_RECONCILIATION)
        except ReconciliationError as e:
            capture_exception(e, context={"job": SyncRunType.FULL_RECONCILIATION.value})
            result.success = False
            result.error = f"Failed to create sync run: {e}"
            return result

        with structlog.contextvars.bound_contextvars(
            job=SyncRunType.FULL_RECONCILIATION.value,
            sync_run_id=result.sync_run_id,
        ):
            try:
                self._sweep(result)
            except Exception as e:
                capture_exception(e, context={"stage": "reconciliation"})
                result.success = False
                result.error = str(e) or type(e).__name__
                self.recorder.complete_quietly(
                    result.sync_run_id,
                    SyncRunStatus.FAILED,
                    records_processed=result.processed,
                    records_fixed=result.fixed,
                    discrepancies_found=result.discrepancies,
                    error_message=result.error,
                    metadata={"issues": result.issue_dicts()},
                )
                return result

        return result

    def _sweep(self, result: ReconciliationResult) -> None:
        total = self.subscriptions.count_by_status(LIVE_STATUSES)
        result.total_subscriptions = total

        if total == 0:
            logger.info("No live subscriptions to reconcile")
            result.message = batch_message(self.batch_size, 0)
            self._complete(result)
            return

        batch = self.subscriptions.list_by_status(LIVE_STATUSES, limit=self.batch_size)
        remaining = max(total - len(batch), 0)
        result.has_more = remaining > 0
        result.message = batch_message(self.batch_size, remaining)

        logger.info(
            "Reconciling subscriptions",
            batch=len(batch),
            total=total,
            has_more=result.has_more,
        )

        for record in batch:
            result.processed += 1
            # Read identifiers up front; a failed write expires the instance
            sub_id, user_id = record.id, record.user_id
            try:
                self._reconcile_one(record, result)
            except Exception as e:
                # Fetch failed for a reason other than not-found
                result.discrepancies += 1
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                result.issues.append(ReconciliationIssue(sub_id, user_id, f"Error: {message}", IssueAction.FAILED))
                capture_exception(e, context={"subscription_id": sub_id}, level="warning")
            finally:
                self.pacer.pace()

        self._complete(result)

    def _reconcile_one(self, record: Subscription, result: ReconciliationResult) -> None:
        sub_id, user_id = record.id, record.user_id

        try:
            snapshot = self.provider.retrieve_subscription(sub_id)
        except NotFoundError:
            result.discrepancies += 1
            action = IssueAction.MARKED_CANCELED
            try:
                self.syncer.mark_canceled(user_id, sub_id)
                result.fixed += 1
            except Exception as e:
                action = IssueAction.FAILED
                capture_exception(e, context={"subscription_id": sub_id, "operation": "mark_canceled"})
            result.issues.append(
                ReconciliationIssue(sub_id, user_id, "Subscription exists in DB but not in Stripe", action)
            )
            return

        found = detect(record, snapshot, tolerance_hours=self.tolerance_hours)
        if not found:
            return

        result.discrepancies += len(found)
        action = IssueAction.AUTO_FIXED
        try:
            self.syncer.sync_from_provider(user_id, snapshot)
            result.fixed += 1
        except Exception as e:
            action = IssueAction.FAILED
            capture_exception(e, context={"subscription_id": sub_id, "operation": "sync_from_provider"})

        for discrepancy in found:
            result.issues.append(ReconciliationIssue(sub_id, user_id, discrepancy.message, action))

    def _complete(self, result: ReconciliationResult) -> None:
        self.recorder.complete(
            result.sync_run_id,
            SyncRunStatus.COMPLETED,
            records_processed=result.processed,
            records_fixed=result.fixed,
            discrepancies_found=result.discrepancies,
            metadata={"issues": result.issue_dicts()},
        )
        logger.info(
            "Reconciliation complete",
            processed=result.processed,
            discrepancies=result.discrepancies,
            fixed=result.fixed,
            has_more=result.has_more,
        )
        for issue in result.issues:
            logger.info(
                "Reconciliation issue",
                subscription_id=issue.sub_id,
                issue=issue.issue,
                action=issue.action.value,
            )


__all__ = [
    "FullReconciliationSweep",
    "ReconciliationResult",
    "ReconciliationIssue",
    "IssueAction",
    "batch_message",
]
