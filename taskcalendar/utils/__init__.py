"""Utility functions and helpers for the task calendar engine."""

from .helpers import (
    ensure_utc,
    format_rrule_datetime,
    from_storage,
    intersects,
    normalize_instant,
    now_utc,
    to_storage,
)
from .logging import get_log_level, get_logger, setup_logging

__all__ = [
    "ensure_utc",
    "format_rrule_datetime",
    "from_storage",
    "get_log_level",
    "get_logger",
    "intersects",
    "normalize_instant",
    "now_utc",
    "setup_logging",
    "to_storage",
]
