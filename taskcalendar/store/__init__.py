"""Task and override persistence."""

from .database import SQLiteTaskStore, SQLiteTransaction
from .models import (
    DESCRIPTIVE_FIELDS,
    MigrationReport,
    MutationResult,
    Occurrence,
    RemovalResult,
    Scope,
    Task,
    TaskFieldDiff,
    TaskOverride,
)
from .protocols import StoreTransaction, TaskStore

__all__ = [
    "DESCRIPTIVE_FIELDS",
    "MigrationReport",
    "MutationResult",
    "Occurrence",
    "RemovalResult",
    "SQLiteTaskStore",
    "SQLiteTransaction",
    "Scope",
    "StoreTransaction",
    "Task",
    "TaskFieldDiff",
    "TaskOverride",
    "TaskStore",
]
