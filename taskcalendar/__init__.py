"""Task Calendar - recurrence expansion and exception management for scheduled tasks."""

__version__ = "1.0.0"

from .exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TaskCalendarError,
    ValidationError,
)
from .service import TaskCalendarService

__all__ = [
    "ConflictError",
    "NotFoundError",
    "PersistenceError",
    "TaskCalendarError",
    "TaskCalendarService",
    "ValidationError",
    "__version__",
]
