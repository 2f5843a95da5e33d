"""Occurrence materialization: expanded instants reconciled with overrides."""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Optional

from ..store.models import DESCRIPTIVE_FIELDS, Occurrence, Task, TaskOverride
from ..utils.helpers import ensure_utc, intersects, normalize_instant
from ..utils.logging import VERBOSE, resolve_logger
from .exceptions import RRuleExpansionError, RRuleOccurrenceLimitError
from .expander import RecurrenceExpander
from .overrides import OverrideIndex


class OccurrenceMaterializer:
    """Turns tasks plus their override indexes into concrete occurrences.

    Pure read: nothing here touches the store. A series whose rule cannot be
    expanded is logged and contributes no occurrences, so one malformed row
    never hides the rest of the calendar.
    """

    def __init__(
        self,
        expander: Optional[RecurrenceExpander] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = resolve_logger(logger, __name__)
        self.expander = expander or RecurrenceExpander(logger=self.logger)

    def materialize(
        self,
        task: Task,
        index: Optional[OverrideIndex],
        range_from: datetime,
        range_to: datetime,
    ) -> list[Occurrence]:
        """Occurrences of one task intersecting ``[range_from, range_to)``.

        Output is ascending for a single task; callers merging several tasks
        sort the combined list.

        Raises:
            RRuleOccurrenceLimitError: If the series has too many occurrences in
                the range; a partial list is never returned
        """
        range_from = ensure_utc(range_from)
        range_to = ensure_utc(range_to)
        if task.is_deleted or range_from >= range_to:
            return []

        if not task.is_recurring:
            if intersects(task.start_at, task.end_at, range_from, range_to):
                return [self._build(task, task.start_at, task.start_at, task.end_at)]
            return []

        index = index or OverrideIndex()
        try:
            return self._materialize_series(task, index, range_from, range_to)
        except RRuleOccurrenceLimitError:
            raise
        except RRuleExpansionError:
            self.logger.exception(
                "Skipping series %s: cannot expand rule %r anchored at %s",
                task.id,
                task.rrule,
                task.start_at.isoformat(),
            )
            return []

    def _materialize_series(
        self, task: Task, index: OverrideIndex, range_from: datetime, range_to: datetime
    ) -> list[Occurrence]:
        rule = task.rrule or ""
        duration = task.duration
        windows = self.expander.expand(task.start_at, duration, rule, range_from, range_to)

        occurrences: list[Occurrence] = []
        handled: set[datetime] = set()
        emitted_starts: set[datetime] = set()
        skipped = 0

        for window in windows:
            key = normalize_instant(window.start)
            handled.add(key)
            if index.is_deleted(key):
                skipped += 1
                continue

            override = index.modification_for(key)
            if override is None:
                occurrences.append(self._build(task, key, window.start, window.end))
                emitted_starts.add(window.start)
                continue

            start, end = self._override_window(override, window.start, duration)
            if not intersects(start, end, range_from, range_to):
                # Moved entirely out of the queried range
                continue
            occurrences.append(self._build(task, key, start, end, override))
            emitted_starts.add(start)

        # Overrides whose original instant is outside the range but were moved into it
        for key, override in index.rescheduled():
            if key in handled:
                continue
            start, end = self._override_window(override, key, duration)
            if start in emitted_starts or not intersects(start, end, range_from, range_to):
                continue
            if not self.expander.is_occurrence(task.start_at, rule, key):
                self.logger.debug(
                    "Ignoring override of %s at %s: no longer an occurrence of %r",
                    task.id,
                    key.isoformat(),
                    rule,
                )
                continue
            occurrences.append(self._build(task, key, start, end, override))
            emitted_starts.add(start)

        occurrences.sort(key=lambda occurrence: occurrence.start)
        self.logger.log(
            VERBOSE,
            "Series %s: %d occurrence(s) in [%s, %s), %d deleted",
            task.id,
            len(occurrences),
            range_from.isoformat(),
            range_to.isoformat(),
            skipped,
        )
        return occurrences

    def materialize_batch(
        self,
        tasks: Iterable[Task],
        overrides_by_series: Mapping[str, OverrideIndex],
        range_from: datetime,
        range_to: datetime,
    ) -> list[Occurrence]:
        """Materialize every task and merge them, ascending by start (ties by task id)."""
        results: list[Occurrence] = []
        for task in tasks:
            results.extend(
                self.materialize(task, overrides_by_series.get(task.id), range_from, range_to)
            )
        results.sort(key=lambda occurrence: (occurrence.start, occurrence.task_id))
        return results

    @staticmethod
    def _override_window(
        override: TaskOverride, generated_start: datetime, duration: timedelta
    ) -> tuple[datetime, datetime]:
        start = override.start_at or generated_start
        end = override.end_at or start + duration
        return start, end

    @staticmethod
    def _build(
        task: Task,
        original_start: datetime,
        start: datetime,
        end: datetime,
        override: Optional[TaskOverride] = None,
    ) -> Occurrence:
        fields = task.template_fields()
        if override is not None:
            for name in DESCRIPTIVE_FIELDS:
                value = getattr(override, name)
                if value is not None:
                    fields[name] = value

        return Occurrence(
            task_id=task.id,
            original_start=original_start,
            start=start,
            end=end,
            rrule=task.rrule,
            is_recurring=task.is_recurring,
            is_exception=override is not None,
            **fields,
        )
