"""Service facade: range queries, scoped edits and legacy-rule migration."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from .config.settings import TaskCalendarSettings, get_settings
from .exceptions import NotFoundError, PersistenceError, TaskCalendarError, ValidationError
from .recurrence.exceptions import RRuleOccurrenceLimitError, RRuleParseError
from .recurrence.expander import RecurrenceExpander
from .recurrence.materializer import OccurrenceMaterializer
from .recurrence.mutator import ScopeMutator
from .recurrence.overrides import OverrideIndex
from .recurrence.sanitizer import sanitize
from .store.models import (
    MigrationReport,
    MutationResult,
    Occurrence,
    RemovalResult,
    Scope,
    Task,
    TaskFieldDiff,
)
from .store.protocols import TaskStore
from .utils.helpers import ensure_utc, now_utc
from .utils.logging import VERBOSE, resolve_logger


class TaskCalendarService:
    """Entry point the command layer calls for every calendar operation.

    Legacy rules are sanitized here, once, before anything reaches the
    expander. Each call reads fresh from the store; nothing is cached.
    """

    def __init__(
        self,
        store: TaskStore,
        settings: Optional[TaskCalendarSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.settings = settings if settings is not None else get_settings()
        self.logger = resolve_logger(logger, __name__)
        self.expander = RecurrenceExpander(self.settings, logger=self.logger)
        self.materializer = OccurrenceMaterializer(self.expander, logger=self.logger)
        self.mutator = ScopeMutator(store, self.expander, logger=self.logger)

    async def expand_range(self, range_from: datetime, range_to: datetime) -> list[Occurrence]:
        """All occurrences intersecting ``[range_from, range_to)``, ascending by start.

        A series whose rule cannot be expanded is logged and skipped.

        Raises:
            ValidationError: If ``range_from >= range_to``, the range is too wide, or
                one series has more occurrences in it than ``rrule_max_occurrences``
        """
        range_from = ensure_utc(range_from)
        range_to = ensure_utc(range_to)
        if range_from >= range_to:
            raise ValidationError("Range start must be before range end")
        if range_to - range_from > timedelta(days=self.settings.max_query_days):
            raise ValidationError(
                f"Range spans more than {self.settings.max_query_days} days"
            )

        tasks = await self.store.find_tasks_in_range(range_from, range_to)
        overrides = await self.store.find_overrides(task.id for task in tasks if task.is_recurring)
        by_series = OverrideIndex.partition(overrides)

        prepared: list[Task] = []
        indexes: dict[str, OverrideIndex] = {}
        for task in tasks:
            if task.is_recurring:
                sanitized = sanitize(task.rrule or "", task.start_at, logger=self.logger)
                if sanitized.rule != task.rrule:
                    task = task.model_copy(update={"rrule": sanitized.rule or None})
                indexes[task.id] = OverrideIndex.build(
                    by_series.get(task.id, []), sanitized.exclusions
                )
            prepared.append(task)

        try:
            occurrences = self.materializer.materialize_batch(
                prepared, indexes, range_from, range_to
            )
        except RRuleOccurrenceLimitError as e:
            raise ValidationError(str(e)) from e
        self.logger.debug(
            f"Range [{range_from.isoformat()}, {range_to.isoformat()}): "
            f"{len(prepared)} task(s), {len(overrides)} override(s), "
            f"{len(occurrences)} occurrence(s)"
        )
        return occurrences

    async def mutate(
        self,
        series_id: str,
        scope: Union[Scope, str],
        occurrence_start: Optional[datetime] = None,
        diff: Union[TaskFieldDiff, dict[str, Any], None] = None,
    ) -> MutationResult:
        """Apply a field diff at ``single``, ``following`` or ``all`` scope."""
        return await self.mutator.mutate(series_id, scope, occurrence_start, diff)

    async def remove(
        self,
        series_id: str,
        scope: Union[Scope, str],
        occurrence_start: Optional[datetime] = None,
    ) -> RemovalResult:
        """Delete at ``single``, ``following`` or ``all`` scope."""
        return await self.mutator.remove(series_id, scope, occurrence_start)

    async def create_task(self, task: Task) -> Task:
        """Store a new task, validating its rule.

        EXDATE clauses in a submitted rule are split out and stored as
        deletion overrides, so stored rules are always plain RRULE values.

        Raises:
            ValidationError: If the window or rule is invalid
        """
        if task.end_at <= task.start_at:
            raise ValidationError("End must be after start")

        exclusions: list[datetime] = []
        if task.rrule:
            sanitized = sanitize(task.rrule, task.start_at, logger=self.logger)
            exclusions = sanitized.exclusions
            try:
                rule = self.expander.validate_rule(sanitized.rule, task.start_at)
            except RRuleParseError as e:
                raise ValidationError(str(e)) from e
            task = task.model_copy(update={"rrule": rule})

        async with self.store.transaction() as tx:
            await tx.insert_task(task)
            for instant in exclusions:
                await tx.upsert_override(task.id, instant, {"deleted_at": now_utc()})

        stored = await self.store.get_task(task.id)
        if stored is None:
            raise PersistenceError(f"Task {task.id} missing after insert")
        self.logger.info(f"Created task {task.id} (rrule={stored.rrule!r})")
        return stored

    async def get_task(self, task_id: str) -> Task:
        """Fetch a task by ID.

        Raises:
            NotFoundError: If no such task exists
        """
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    async def migrate_legacy_rules(self) -> MigrationReport:
        """Move EXDATE clauses embedded in stored rules into deletion overrides.

        Each task is migrated in its own transaction; a failure is logged and
        counted and the remaining tasks continue.
        """
        tasks = await self.store.find_legacy_rule_tasks()
        report = MigrationReport(total=len(tasks))
        self.logger.info(f"Found {len(tasks)} task(s) with legacy EXDATE rules")

        for task in tasks:
            try:
                report.exclusions_created += await self._migrate_task(task)
                report.fixed += 1
            except TaskCalendarError:
                self.logger.exception(f"Failed to migrate rule of task {task.id}")
                report.errors += 1

        self.logger.info(
            f"Legacy rule migration: fixed={report.fixed} errors={report.errors} total={report.total}"
        )
        return report

    async def _migrate_task(self, task: Task) -> int:
        sanitized = sanitize(task.rrule or "", task.start_at, logger=self.logger)

        pending = []
        for instant in sanitized.exclusions:
            existing = await self.store.get_override(task.id, instant)
            if existing is None or existing.is_superseded or not existing.is_deleted:
                pending.append(instant)

        deleted_at = now_utc()
        async with self.store.transaction() as tx:
            for instant in pending:
                await tx.upsert_override(task.id, instant, {"deleted_at": deleted_at})
            await tx.update_task(task.id, {"rrule": sanitized.rule or None})

        self.logger.log(
            VERBOSE,
            f"Task {task.id}: {task.rrule!r} -> {sanitized.rule!r}, "
            f"{len(pending)} exclusion(s) created"
        )
        return len(pending)
