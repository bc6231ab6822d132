"""
Type and time helpers for SQLModel code.

SQLModel fields are declared with Python types (e.g., `user_id: str`) but at
the class level they're InstrumentedAttribute descriptors with SQLAlchemy
column methods like .desc(), .in_(), .is_not(). `col()` bridges that gap for
type checkers.

Timestamps are timezone-aware UTC and stored in `DateTime(timezone=True)`
columns (`TZDateTime`), so PostgreSQL keeps `timestamptz` and SQLite keeps
UTC wall-clock strings that compare correctly.
"""

from typing import TYPE_CHECKING, TypeVar
from datetime import datetime, timezone

from sqlalchemy import DateTime

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")

# Column type for every stored timestamp; pass as `sa_type=TZDateTime`
TZDateTime = DateTime(timezone=True)


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        select(Transaction).where(col(Transaction.closing_date).is_not(None))
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """Current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime for storage and queries: aware, in UTC.

    Naive inputs are assumed to already be UTC (SQLite hands stored values
    back without tzinfo).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = [
    "TZDateTime",
    "col",
    "utc_now",
    "to_utc",
]
