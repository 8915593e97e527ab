"""
In-process cron for the sweeps.

Each job opens its own Session and runs the synchronous sweep in a worker
thread so the event loop stays free for HTTP traffic.

Schedule (UTC):
    webhook recovery     */15 * * * *
    expiration check     5 * * * *
    full reconciliation  5 3 * * *
"""
import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from app.core.errors import capture_exception
from app.core.logging_config import get_logger
from app.db import engine
from app.services.sweeps import (
    build_expiration_sweep,
    build_reconciliation_sweep,
    build_recovery_sweep,
)

logger = get_logger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


def run_reconciliation() -> dict:
    with Session(engine) as session:
        return build_reconciliation_sweep(session).run().to_response()


def run_webhook_recovery() -> dict:
    with Session(engine) as session:
        return build_recovery_sweep(session).run().to_response()


def run_expiration_check() -> dict:
    with Session(engine) as session:
        return build_expiration_sweep(session).run().to_response()


async def _run_job(name: str, func) -> None:
    logger.info("Scheduled job starting", job=name)
    try:
        summary = await asyncio.to_thread(func)
    except Exception as e:
        capture_exception(e, context={"job": name})
        return
    logger.info("Scheduled job finished", job=name, summary=summary)


async def job_full_reconciliation():
    await _run_job("full_reconciliation", run_reconciliation)


async def job_webhook_recovery():
    await _run_job("webhook_recovery", run_webhook_recovery)


async def job_expiration_check():
    await _run_job("expiration_check", run_expiration_check)


def register_jobs() -> None:
    # Job configuration for durability:
    # - max_instances=1: Prevent overlapping runs
    # - misfire_grace_time: Allow late execution if within grace period (then skip)
    # - coalesce=True: If multiple runs were missed, only run once when catching up

    # Webhook recovery every 15 minutes
    scheduler.add_job(
        job_webhook_recovery,
        CronTrigger.from_crontab("*/15 * * * *", timezone="UTC"),
        id="job_webhook_recovery",
        max_instances=1,
        misfire_grace_time=600,  # 10 minutes
        coalesce=True,
        replace_existing=True,
    )

    # Expiration check hourly at :05
    scheduler.add_job(
        job_expiration_check,
        CronTrigger.from_crontab("5 * * * *", timezone="UTC"),
        id="job_expiration_check",
        max_instances=1,
        misfire_grace_time=1800,  # 30 minutes
        coalesce=True,
        replace_existing=True,
    )

    # Full reconciliation daily at 03:05
    scheduler.add_job(
        job_full_reconciliation,
        CronTrigger.from_crontab("5 3 * * *", timezone="UTC"),
        id="job_full_reconciliation",
        max_instances=1,
        misfire_grace_time=3600,  # 1 hour
        coalesce=True,
        replace_existing=True,
    )


def start_scheduler() -> None:
    register_jobs()
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info("Job registered", job_id=job.id, trigger=str(job.trigger))
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
