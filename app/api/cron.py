"""
Scheduler-triggered sweep endpoints.

Every route here sits behind ``verify_cron_secret``; a rejected call never
opens a session. Each sweep returns its JSON summary with 200 on success
and the failure body with 500 otherwise.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from app.api.deps import (
    get_expiration_sweep,
    get_reconciliation_sweep,
    get_recovery_sweep,
    get_sync_run_recorder,
    verify_cron_secret,
)
from app.core.logging_config import get_logger
from app.models.sync_run import SyncRunType
from app.schemas import SyncRunList, SyncRunOut
from app.services.expiration_check import ExpirationCheckSweep
from app.services.reconciliation import FullReconciliationSweep
from app.services.sync_runs import SyncRunRecorder
from app.services.webhook_recovery import WebhookRecoverySweep

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


def _respond(result) -> JSONResponse:
    return JSONResponse(status_code=200 if result.success else 500, content=result.to_response())


@router.post("/reconcile")
def reconcile(sweep: FullReconciliationSweep = Depends(get_reconciliation_sweep)):
    """Compare live subscriptions with the provider and repair drift (one batch)."""
    logger.info("Full reconciliation triggered")
    return _respond(sweep.run())


@router.post("/recover-webhooks")
def recover_webhooks(sweep: WebhookRecoverySweep = Depends(get_recovery_sweep)):
    """Replay failed webhook events that are still recoverable."""
    logger.info("Webhook recovery triggered")
    return _respond(sweep.run())


@router.post("/check-expirations")
def check_expirations(sweep: ExpirationCheckSweep = Depends(get_expiration_sweep)):
    """Resolve active subscriptions whose billing period already ended."""
    logger.info("Expiration check triggered")
    return _respond(sweep.run())


@router.get("/sync-runs", response_model=SyncRunList)
def list_sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    recorder: SyncRunRecorder = Depends(get_sync_run_recorder),
):
    runs = recorder.list_recent(limit=limit)
    return SyncRunList(runs=[SyncRunOut.model_validate(run) for run in runs], count=len(runs))


@router.get("/sync-runs/latest", response_model=SyncRunOut)
def latest_sync_run(
    job_type: SyncRunType,
    recorder: SyncRunRecorder = Depends(get_sync_run_recorder),
):
    """Most recent run of one sweep, for checking when it last finished."""
    run = recorder.latest(job_type)
    if run is None:
        raise HTTPException(status_code=404, detail=f"No {job_type.value} runs recorded")
    return SyncRunOut.model_validate(run)


@router.get("/sync-runs/{run_id}", response_model=SyncRunOut)
def get_sync_run(run_id: int, recorder: SyncRunRecorder = Depends(get_sync_run_recorder)):
    run = recorder.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Sync run not found")
    return SyncRunOut.model_validate(run)
