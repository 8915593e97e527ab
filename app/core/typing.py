"""
Type helpers for SQLAlchemy/SQLModel compatibility with type checkers.

SQLModel fields are declared with Python types (e.g., `status: str`) but at the
class level they're actually InstrumentedAttribute descriptors with SQLAlchemy
column methods like .desc(), .in_(), .is_(), etc.

Type checkers see them as plain Python types and report errors when column
methods are called. This module provides helpers to bridge that gap.
"""

from typing import TYPE_CHECKING, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        from app.core.typing import col

        select(Subscription).where(col(Subscription.status).in_(LIVE_STATUSES))
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields.
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalise a datetime to aware UTC.

    SQLite hands back naive datetimes even for values stored as aware ones;
    treat naive values as UTC so comparisons never mix the two.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = ["col", "utc_now", "as_utc"]
