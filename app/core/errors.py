"""
Error taxonomy and unified error capture with Sentry integration.

Taxonomy (every sweep classifies failures into one of these):
- NotFoundError: the provider no longer has the record; terminal for that record
- TransientProviderError: network / rate limit / 5xx; eligible for a later retry
- ProviderError: any other provider failure (kind="other")
- AuthorizationError: bad shared secret or webhook signature; rejects the invocation
- StoreError: local persistence failure
- EventProcessingError: an event could not be applied (retryable)

Provider adapters raise ProviderError subclasses tagged with a ProviderErrorKind,
so sweep logic never inspects SDK exception types.

Usage:
    # Capture an exception
    capture_exception(exc, context={"subscription_id": "sub_123"})

    # Context manager for best-effort operations
    with ErrorHandler("dependent_recalculation", context={"user_id": user_id, "subscription_id": record.id}):
        recalculator.subscription_changed(user_id, previous, record)
"""

from enum import Enum
from typing import Optional, Any, Dict
from datetime import datetime, timezone
import structlog

logger = structlog.get_logger(__name__)

__all__ = [
    "ReconciliationError",
    "ProviderErrorKind",
    "ProviderError",
    "NotFoundError",
    "TransientProviderError",
    "AuthorizationError",
    "StoreError",
    "EventProcessingError",
    "init_sentry",
    "capture_exception",
    "ErrorHandler",
    "is_sentry_enabled",
]


class ReconciliationError(Exception):
    """Base class for all errors raised by the reconciliation engine."""


class ProviderErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    OTHER = "other"


class ProviderError(ReconciliationError):
    """A billing provider call failed. ``kind`` carries the classification."""

    kind: ProviderErrorKind = ProviderErrorKind.OTHER

    def __init__(self, message: str, kind: Optional[ProviderErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class NotFoundError(ProviderError):
    kind = ProviderErrorKind.NOT_FOUND


class TransientProviderError(ProviderError):
    kind = ProviderErrorKind.TRANSIENT


class AuthorizationError(ReconciliationError):
    """Caller failed the shared-secret or signature check."""


class StoreError(ReconciliationError):
    """Local persistence failed. The session has already been rolled back."""


class EventProcessingError(ReconciliationError):
    """An event could not be applied to local state."""


# Lazy-loaded Sentry SDK (optional at runtime)
_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Args:
        dsn: Sentry DSN (from project settings)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)
        release: Release version

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import logging
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR,
                ),
            ],
            ignore_errors=[
                KeyboardInterrupt,
                SystemExit,
            ],
            before_send=_before_send,
        )

        _sentry_initialized = True
        logger.info("Sentry initialized", environment=environment, release=release)
        return True

    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Tag events with the current sweep context."""
    context = structlog.contextvars.get_contextvars()
    tags = event.setdefault("tags", {})
    for key in ("job", "sync_run_id"):
        if context.get(key) is not None:
            tags[key] = str(context[key])
    return event


def is_sentry_enabled() -> bool:
    """Check if Sentry is initialized and available."""
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"subscription_id": "sub_123"})
        level: Severity level (debug, info, warning, error, fatal)
        fingerprint: Custom grouping fingerprint for Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.error)
    log_func("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if fingerprint:
                    scope.fingerprint = fingerprint
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


class ErrorHandler:
    """
    Context manager for best-effort operations with automatic capture.

    Usage:
        # Suppress and capture errors
        with ErrorHandler("dependent_recalculation", context={"user_id": user_id}):
            recalculator.subscription_changed(user_id, previous, record)

    Args:
        operation: Name of the operation (for grouping in Sentry)
        context: Additional context dict
        capture: Whether to capture the exception (default: True)
        reraise: Whether to re-raise exception (default: False)
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.error: Optional[BaseException] = None
        self.event_id: Optional[str] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None or not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                fingerprint=[self.operation, type(exc_val).__name__],
            )
        # Return True to suppress exception (unless reraise=True)
        return not self.reraise
