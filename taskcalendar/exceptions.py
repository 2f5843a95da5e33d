"""Error taxonomy for the task calendar engine.

Each error carries the HTTP status the (external) command layer should answer
with, following the same ``message`` / ``status_code`` shape used for all
package errors.
"""

from typing import Optional


class TaskCalendarError(Exception):
    """Base exception for all task calendar errors."""

    default_status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status_code


class ValidationError(TaskCalendarError):
    """Request validation failed.

    Raised when:
    - A query range has ``from >= to``
    - An occurrence instant is missing for single/following scope (or given for all)
    - A recurrence rule submitted on write is malformed or unsupported
    - A field diff would leave an occurrence ending before it starts

    Always raised before any store write.
    """

    default_status_code = 400


class NotFoundError(TaskCalendarError):
    """A series, occurrence or override does not exist (or is soft-deleted)."""

    default_status_code = 404


class ConflictError(TaskCalendarError):
    """The requested scope is illegal for the target task.

    Raised when single or following scope is requested on a task that has no
    recurrence rule.
    """

    default_status_code = 409


class PersistenceError(TaskCalendarError):
    """A mutation could not be persisted as intended.

    Raised when a store transaction fails (and was rolled back) or when the
    read-back after a committed mutation does not match the intended write.
    """

    default_status_code = 500
