"""
Sync Run Recorder

Owns the SyncRun lifecycle: one ``running`` row per sweep invocation,
finalized exactly once as ``completed`` or ``failed``.

Usage:
    recorder = SyncRunRecorder(session)
    run_id = recorder.create(SyncRunType.FULL_RECONCILIATION)
    try:
        ...
        recorder.complete(run_id, SyncRunStatus.COMPLETED, records_processed=40, records_fixed=3)
    except Exception as e:
        recorder.complete_quietly(run_id, SyncRunStatus.FAILED, error_message=str(e))
        raise
"""

from typing import Any, Optional

from sqlmodel import Session, select

from app.core.db_utils import store_errors
from app.core.errors import StoreError, capture_exception
from app.core.logging_config import get_logger
from app.core.typing import col, utc_now
from app.models.sync_run import SyncRun, SyncRunStatus, SyncRunType

logger = get_logger(__name__)


class SyncRunRecorder:
    def __init__(self, session: Session):
        self.session = session

    def create(self, job_type: SyncRunType) -> int:
        """Insert a running SyncRun. Raises StoreError if the row cannot be written."""
        with store_errors(self.session, "create_sync_run", job_type=job_type.value):
            run = SyncRun(job_type=job_type, status=SyncRunStatus.RUNNING)
            self.session.add(run)
            self.session.commit()
            self.session.refresh(run)

        logger.info("Sync run started", sync_run_id=run.id, job_type=job_type.value)
        assert run.id is not None
        return run.id

    def complete(
        self,
        run_id: int,
        status: SyncRunStatus,
        records_processed: int = 0,
        records_fixed: int = 0,
        discrepancies_found: Optional[int] = None,
        error_message: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SyncRun:
        """
        Finalize a run.

        Raises:
            ValueError: ``status`` is not terminal, or the run was already finalized
            StoreError: the run is missing or the write failed
        """
        if status == SyncRunStatus.RUNNING:
            raise ValueError("A sync run can only be completed as completed or failed")

        with store_errors(self.session, "complete_sync_run", sync_run_id=run_id):
            run = self.session.get(SyncRun, run_id)
            if run is None:
                raise StoreError(f"Sync run {run_id} not found")
            if run.is_finalized:
                raise ValueError(f"Sync run {run_id} is already {run.status}")

            run.status = status
            run.completed_at = utc_now()
            run.records_processed = records_processed
            run.records_fixed = records_fixed
            if discrepancies_found is not None:
                run.discrepancies_found = discrepancies_found
            if error_message is not None:
                run.error_message = error_message[:1000]
            if metadata is not None:
                run.run_metadata = metadata

            self.session.add(run)
            self.session.commit()
            self.session.refresh(run)

        logger.info(
            "Sync run finished",
            sync_run_id=run_id,
            status=status.value,
            records_processed=records_processed,
            records_fixed=records_fixed,
            discrepancies_found=discrepancies_found,
        )
        return run

    def complete_quietly(self, run_id: Optional[int], status: SyncRunStatus, **kwargs: Any) -> Optional[SyncRun]:
        """
        Best-effort ``complete`` for failure paths.

        A failure here is logged and captured but never raised, so it cannot
        mask the error that is being reported to the caller.
        """
        if run_id is None:
            return None
        try:
            return self.complete(run_id, status, **kwargs)
        except (StoreError, ValueError) as e:
            capture_exception(e, context={"operation": "complete_sync_run", "sync_run_id": run_id})
            return None

    def get(self, run_id: int) -> Optional[SyncRun]:
        with store_errors(self.session, "get_sync_run", sync_run_id=run_id):
            return self.session.get(SyncRun, run_id)

    def latest(self, job_type: SyncRunType) -> Optional[SyncRun]:
        with store_errors(self.session, "latest_sync_run", job_type=job_type.value):
            stmt = (
                select(SyncRun)
                .where(col(SyncRun.job_type) == job_type)
                .order_by(col(SyncRun.started_at).desc(), col(SyncRun.id).desc())
                .limit(1)
            )
            return self.session.exec(stmt).first()

    def list_recent(self, limit: int = 20, job_type: Optional[SyncRunType] = None) -> list[SyncRun]:
        with store_errors(self.session, "list_sync_runs"):
            stmt = select(SyncRun)
            if job_type is not None:
                stmt = stmt.where(col(SyncRun.job_type) == job_type)
            stmt = stmt.order_by(col(SyncRun.started_at).desc(), col(SyncRun.id).desc()).limit(limit)
            return list(self.session.exec(stmt).all())


__all__ = ["SyncRunRecorder"]
