"""Instant helpers shared by the recurrence engine and the store."""

from datetime import UTC, datetime, timedelta
from typing import Optional

RRULE_DATETIME_FORMAT = "%Y%m%dT%H%M%SZ"


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as a timezone-aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def normalize_instant(dt: datetime) -> datetime:
    """Truncate an instant to whole seconds in UTC.

    Stored instants and freshly generated recurrence instants can disagree at
    sub-second resolution, so every override lookup goes through this.
    """
    return ensure_utc(dt).replace(microsecond=0)


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def format_rrule_datetime(dt: datetime) -> str:
    """Format an instant as an RFC 5545 UTC date-time (``20260101T150000Z``)."""
    return normalize_instant(dt).strftime(RRULE_DATETIME_FORMAT)


def to_storage(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an instant to a fixed-width UTC ISO string.

    Fixed width keeps lexicographic order equal to chronological order, which
    the store's range predicates rely on.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_storage(value: Optional[str]) -> Optional[datetime]:
    """Parse a value written by :func:`to_storage`."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def intersects(start: datetime, end: datetime, range_from: datetime, range_to: datetime) -> bool:
    """Half-open intersection test: ``start < range_to and end > range_from``."""
    return start < range_to and end > range_from


ONE_SECOND = timedelta(seconds=1)
