"""
Audit record for one sweep invocation.

A run is inserted as ``running`` before any sweep work starts and finalized
exactly once, as ``completed`` or ``failed``.

Example:
    run = SyncRun(job_type=SyncRunType.FULL_RECONCILIATION)
    # ... sweep runs ...
    run.status = SyncRunStatus.COMPLETED
    run.records_processed = 40
    run.run_metadata = {"issues": [...]}
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from app.core.typing import utc_now


class SyncRunType(str, Enum):
    FULL_RECONCILIATION = "full_reconciliation"
    WEBHOOK_RECOVERY = "webhook_recovery"
    EXPIRATION_CHECK = "expiration_check"


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRun(SQLModel, table=True):
    __tablename__ = "sync_run"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_type: SyncRunType = Field(index=True)
    status: SyncRunStatus = Field(default=SyncRunStatus.RUNNING, index=True)
    started_at: datetime = Field(default_factory=utc_now, index=True)
    completed_at: Optional[datetime] = None
    records_processed: int = Field(default=0)
    records_fixed: int = Field(default=0)
    discrepancies_found: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    # "metadata" is reserved on SQLModel classes, so the attribute is renamed
    run_metadata: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column("metadata", JSON),
        description="Issue list for reconciliation, recovered/unrecoverable counts for recovery",
    )

    @property
    def is_finalized(self) -> bool:
        return self.status != SyncRunStatus.RUNNING


__all__ = ["SyncRun", "SyncRunType", "SyncRunStatus"]
