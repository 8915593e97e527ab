from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from datetime import datetime

from app.models.sync_run import SyncRunStatus, SyncRunType


class SyncRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_type: SyncRunType
    status: SyncRunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_processed: int
    records_fixed: int
    discrepancies_found: int
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("run_metadata", "metadata"))


class SyncRunList(BaseModel):
    runs: List[SyncRunOut]
    count: int


class WebhookAck(BaseModel):
    received: bool = True
    skipped: Optional[bool] = None
    reason: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None
