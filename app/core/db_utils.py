"""Database utilities shared by the stores.

Stores wrap every unit of work in ``store_errors`` so a failed statement
rolls the session back and surfaces as ``StoreError``. The sweep loop can
then record the failure and carry on with the next record on the same
session.
"""

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.errors import StoreError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# Errors that indicate a transient connection failure
TRANSIENT_ERRORS = (
    "server closed the connection unexpectedly",
    "connection refused",
    "connection reset by peer",
    "SSL connection has been closed unexpectedly",
    "terminating connection due to administrator command",
    "connection timed out",
    "could not connect to server",
    "the database system is starting up",
    "the database system is shutting down",
)


def is_transient_error(error: Exception) -> bool:
    """Check if an error is a transient connection failure."""
    error_msg = str(error).lower()
    return any(msg.lower() in error_msg for msg in TRANSIENT_ERRORS)


@contextmanager
def store_errors(session: Session, operation: str, **context: Any) -> Iterator[None]:
    """
    Translate SQLAlchemy failures into StoreError after rolling back.

    Usage:
        with store_errors(self.session, "mark_canceled", subscription_id=sub_id):
            ...
            self.session.commit()
    """
    try:
        yield
    except SQLAlchemyError as e:
        try:
            session.rollback()
        except SQLAlchemyError as rollback_error:
            logger.warning("Rollback failed", operation=operation, error=str(rollback_error))
        logger.error(
            "Store operation failed",
            operation=operation,
            transient=is_transient_error(e),
            error=str(e),
            **context,
        )
        raise StoreError(f"{operation} failed: {e}") from e


__all__ = ["store_errors", "is_transient_error"]
