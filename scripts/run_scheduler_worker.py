#!/usr/bin/env python3
import asyncio

from app.core.config import settings
from app.core.errors import init_sentry
from app.core.logging_config import get_logger
from app.core.scheduler import start_scheduler, stop_scheduler

logger = get_logger("scheduler_worker")


async def main():
    logger.info("Starting dedicated scheduler worker")
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    start_scheduler()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Scheduler worker shutting down")
    finally:
        stop_scheduler()


if __name__ == "__main__":
    asyncio.run(main())
