"""
Structured logging configuration using structlog.

Provides JSON-formatted logs for production (searchable/aggregatable)
and human-readable colored output for development.

Usage:
    from app.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("subscription synced", subscription_id="sub_123", status="past_due")

Output in production (JSON):
    {"event": "subscription synced", "subscription_id": "sub_123", "status": "past_due",
     "sync_run_id": 42, "job": "full_reconciliation", "timestamp": "2024-01-01T12:00:00Z",
     "level": "info"}

Output in development (colored):
    2024-01-01 12:00:00 [info     ] subscription synced    subscription_id=sub_123 status=past_due

Sweeps bind ``job`` and ``sync_run_id`` with ``structlog.contextvars.bound_contextvars`` so every
per-record line can be traced back to its Sync Run.
"""

import logging
import os
import sys
from typing import Any

import structlog

# Determine environment
IS_PRODUCTION = os.getenv("ENVIRONMENT", "production") == "production"
IS_TEST = "pytest" in sys.modules


def configure_logging() -> None:
    """Configure structlog with appropriate processors for the environment."""

    # Shared processors for all environments
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if IS_PRODUCTION and not IS_TEST:
        # Production: JSON output for log aggregation
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Development: colored, human-readable output
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=not IS_TEST),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging so third-party libraries still print
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO,
    )

    # Reduce noise from chatty libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger with JSON/console output based on environment
    """
    return structlog.get_logger(name)


# Configure on import
configure_logging()
