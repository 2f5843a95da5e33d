"""Persistence interfaces the recurrence engine depends on."""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Optional, Protocol

from .models import Task, TaskOverride


class StoreTransaction(Protocol):
    """Write operations that commit or roll back together."""

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> int:
        """Apply column changes to a task; returns rows affected."""
        ...

    async def insert_task(self, task: Task) -> None: ...

    async def upsert_override(
        self, series_id: str, original_start: datetime, changes: dict[str, Any]
    ) -> None:
        """Create or update the override keyed by (series, original instant).

        Only the given columns are written on update; an existing superseded
        row is revived.
        """
        ...

    async def supersede_overrides(
        self, series_id: str, after: datetime, inclusive: bool = False
    ) -> int:
        """Mark live overrides at (or strictly after) ``after`` superseded."""
        ...


class TaskStore(Protocol):
    """Read access plus transactional writes for tasks and overrides."""

    async def initialize(self) -> None: ...

    async def create_task(self, task: Task) -> Task: ...

    async def get_task(self, task_id: str) -> Optional[Task]: ...

    async def find_tasks_in_range(self, range_from: datetime, range_to: datetime) -> list[Task]:
        """Live tasks that can contribute an occurrence to the range.

        Recurring tasks anchored before ``range_to`` are always candidates, as
        are series with a live override moved into the range; standalone
        tasks are filtered by overlap.
        """
        ...

    async def find_overrides(
        self, series_ids: Iterable[str], include_superseded: bool = False
    ) -> list[TaskOverride]: ...

    async def get_override(
        self, series_id: str, original_start: datetime
    ) -> Optional[TaskOverride]: ...

    async def find_child_series(self, parent_series_id: str) -> list[Task]: ...

    async def find_legacy_rule_tasks(self) -> list[Task]:
        """Live tasks whose stored rule embeds an EXDATE clause."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]: ...
