"""Edit and delete operations scoped to one occurrence, the rest of a series, or all of it.

The three scopes mirror consumer calendar applications:

- ``single``: write an override for one occurrence, keyed by its original
  instant. The series template and every other occurrence are untouched.
- ``following``: cut the series at the target occurrence. The original
  series is bounded with ``UNTIL`` one second before the cut; an update
  continues the rest as a new child series that keeps the deleted
  occurrences deleted, a delete just stops.
- ``all``: change or soft-delete the series template itself.

Every operation validates before writing, performs all of its writes in one
store transaction, and reads the result back to confirm it.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..store.models import (
    DESCRIPTIVE_FIELDS,
    TIMING_FIELDS,
    MutationResult,
    RemovalResult,
    Scope,
    Task,
    TaskFieldDiff,
    TaskOverride,
)
from ..store.protocols import StoreTransaction, TaskStore
from ..utils.helpers import ONE_SECOND, normalize_instant, now_utc
from ..utils.logging import resolve_logger
from .exceptions import RRuleExpansionError, RRuleParseError
from .expander import RecurrenceExpander
from .rules import get_part, split_rule, with_until
from .sanitizer import SanitizedRule, sanitize

# Task columns that can never be cleared
_REQUIRED_TASK_FIELDS = ("start_at", "end_at", "customer_name", "all_day")


class ScopeMutator:
    """Applies scoped edits and deletes to recurring tasks."""

    def __init__(
        self,
        store: TaskStore,
        expander: Optional[RecurrenceExpander] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.logger = resolve_logger(logger, __name__)
        self.expander = expander or RecurrenceExpander(logger=self.logger)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def mutate(
        self,
        series_id: str,
        scope: Union[Scope, str],
        occurrence_start: Optional[datetime] = None,
        diff: Union[TaskFieldDiff, dict[str, Any], None] = None,
    ) -> MutationResult:
        """Apply a field diff at the requested scope.

        Args:
            series_id: Task (series) ID
            scope: ``single``, ``following`` or ``all``
            occurrence_start: Original start of the target occurrence
                (required for single/following, rejected for all)
            diff: Field changes; only explicitly set fields apply

        Returns:
            MutationResult; ``series_id`` names the child created by a
            following-scope split

        Raises:
            ValidationError: Malformed request, checked before anything is read
            NotFoundError: Series or occurrence does not exist
            ConflictError: Single/following scope on a non-recurring task
            PersistenceError: The write failed or did not read back as intended
        """
        resolved_scope = self._resolve_scope(scope, occurrence_start)
        changes = self._resolve_changes(diff)

        if resolved_scope is Scope.SINGLE and "rrule" in changes:
            raise ValidationError("Recurrence rule changes are not allowed for a single occurrence")
        if resolved_scope is not Scope.SINGLE:
            cleared = [name for name in _REQUIRED_TASK_FIELDS if name in changes and changes[name] is None]
            if cleared:
                raise ValidationError(f"Cannot clear required field(s): {', '.join(cleared)}")
        if changes.get("rrule") is not None:
            changes["rrule"] = self._validate_rule(changes["rrule"])
        self._check_window(changes.get("start_at"), changes.get("end_at"))

        task = await self._load_series(series_id)

        if resolved_scope is Scope.ALL:
            return await self._update_all(task, changes)

        instant, sanitized = self._resolve_occurrence(task, occurrence_start)

        if resolved_scope is Scope.SINGLE:
            return await self._update_single(task, instant, sanitized, changes)

        await self._ensure_not_deleted(task, instant, sanitized)
        if instant == normalize_instant(task.start_at):
            self.logger.info(f"Following-scope update of {task.id} at its anchor; applying to all")
            return await self._update_all(task, changes)
        return await self._update_following(task, instant, sanitized, changes)

    async def remove(
        self,
        series_id: str,
        scope: Union[Scope, str],
        occurrence_start: Optional[datetime] = None,
    ) -> RemovalResult:
        """Delete at the requested scope.

        Returns:
            RemovalResult counting rows written or marked (0 when the
            occurrence was already deleted)

        Raises:
            ValidationError, NotFoundError, ConflictError, PersistenceError:
            as for :meth:`mutate`
        """
        resolved_scope = self._resolve_scope(scope, occurrence_start)
        task = await self._load_series(series_id)

        if resolved_scope is Scope.ALL:
            return await self._remove_all(task)

        instant, sanitized = self._resolve_occurrence(task, occurrence_start)

        if resolved_scope is Scope.SINGLE:
            return await self._remove_single(task, instant, sanitized)

        if instant == normalize_instant(task.start_at):
            self.logger.info(f"Following-scope delete of {task.id} at its anchor; deleting series")
            return await self._remove_all(task)
        return await self._remove_following(task, instant, sanitized)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_scope(scope: Union[Scope, str], occurrence_start: Optional[datetime]) -> Scope:
        try:
            resolved = Scope(scope)
        except ValueError:
            raise ValidationError(
                f"Invalid scope: {scope!r} (expected single, following or all)"
            ) from None

        if resolved is Scope.ALL and occurrence_start is not None:
            raise ValidationError("An occurrence instant is not accepted for scope 'all'")
        if resolved is not Scope.ALL and occurrence_start is None:
            raise ValidationError(f"An occurrence instant is required for scope '{resolved.value}'")
        return resolved

    @staticmethod
    def _resolve_changes(diff: Union[TaskFieldDiff, dict[str, Any], None]) -> dict[str, Any]:
        if diff is None:
            return {}
        if isinstance(diff, dict):
            try:
                diff = TaskFieldDiff(**diff)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid field diff: {e}") from e
        return diff.changes()

    def _validate_rule(self, rule_string: str, anchor: Optional[datetime] = None) -> str:
        try:
            return self.expander.validate_rule(rule_string, anchor)
        except RRuleParseError as e:
            raise ValidationError(str(e)) from e

    @staticmethod
    def _check_window(start: Optional[datetime], end: Optional[datetime]) -> None:
        if start is not None and end is not None and end <= start:
            raise ValidationError("End must be after start")

    async def _load_series(self, series_id: str) -> Task:
        task = await self.store.get_task(series_id)
        if task is None or task.is_deleted:
            raise NotFoundError(f"Task not found: {series_id}")
        return task

    def _resolve_occurrence(
        self, task: Task, occurrence_start: Optional[datetime]
    ) -> tuple[datetime, SanitizedRule]:
        """Normalize the target instant and confirm the series generates it."""
        if not task.is_recurring:
            raise ConflictError(f"Task {task.id} is not recurring; only scope 'all' applies")

        if occurrence_start is None:
            raise ValidationError("An occurrence instant is required for this scope")
        instant = normalize_instant(occurrence_start)
        sanitized = sanitize(task.rrule or "", task.start_at, logger=self.logger)

        try:
            generated = self.expander.is_occurrence(task.start_at, sanitized.rule, instant)
        except RRuleExpansionError as e:
            raise ConflictError(f"Stored rule of task {task.id} cannot be evaluated: {e}") from e
        if not generated:
            raise NotFoundError(f"No occurrence of task {task.id} at {instant.isoformat()}")
        return instant, sanitized

    # ------------------------------------------------------------------
    # Scope: all
    # ------------------------------------------------------------------

    async def _update_all(self, task: Task, changes: dict[str, Any]) -> MutationResult:
        effective = {name: value for name, value in changes.items() if getattr(task, name) != value}
        if not effective:
            self.logger.debug(f"Update of {task.id} changes nothing")
            return MutationResult(changed=False)

        self._check_window(
            effective.get("start_at", task.start_at), effective.get("end_at", task.end_at)
        )

        async with self.store.transaction() as tx:
            if "rrule" in effective and task.rrule:
                sanitized = sanitize(task.rrule, task.start_at, logger=self.logger)
                await self._persist_exclusions(tx, task.id, sanitized.exclusions)
            await tx.update_task(task.id, effective)

        stored = await self._read_back_task(task.id)
        self._verify_fields(stored, effective, task.id)
        self.logger.info(f"Updated series {task.id} (fields: {', '.join(sorted(effective))})")
        return MutationResult(changed=True)

    async def _remove_all(self, task: Task) -> RemovalResult:
        async with self.store.transaction() as tx:
            changed = await tx.update_task(task.id, {"deleted_at": now_utc()})

        stored = await self._read_back_task(task.id)
        if not stored.is_deleted:
            raise PersistenceError(f"Task {task.id} is not marked deleted after delete")
        self.logger.info(f"Deleted series {task.id}")
        return RemovalResult(changed=changed)

    # ------------------------------------------------------------------
    # Scope: single
    # ------------------------------------------------------------------

    async def _update_single(
        self, task: Task, instant: datetime, sanitized: SanitizedRule, changes: dict[str, Any]
    ) -> MutationResult:
        live = await self._ensure_not_deleted(task, instant, sanitized)

        override_changes = {
            name: value
            for name, value in changes.items()
            if name in TIMING_FIELDS or name in DESCRIPTIVE_FIELDS
        }
        if not override_changes:
            return MutationResult(changed=False)

        start = override_changes.get("start_at") or (live and live.start_at) or instant
        end = override_changes.get("end_at") or (live and live.end_at) or start + task.duration
        self._check_window(start, end)

        async with self.store.transaction() as tx:
            await tx.upsert_override(task.id, instant, override_changes)

        stored = await self.store.get_override(task.id, instant)
        if stored is None or stored.is_deleted or stored.is_superseded:
            raise PersistenceError(
                f"Override of task {task.id} at {instant.isoformat()} missing after write"
            )
        self._verify_fields(stored, override_changes, task.id)
        self.logger.info(f"Updated occurrence of {task.id} at {instant.isoformat()}")
        return MutationResult(changed=True)

    async def _remove_single(
        self, task: Task, instant: datetime, sanitized: SanitizedRule
    ) -> RemovalResult:
        existing = await self.store.get_override(task.id, instant)
        already_deleted = (
            existing is not None and existing.is_deleted and not existing.is_superseded
        )
        if already_deleted or instant in set(sanitized.exclusions):
            self.logger.debug(f"Occurrence of {task.id} at {instant.isoformat()} already deleted")
            return RemovalResult(changed=0)

        async with self.store.transaction() as tx:
            await tx.upsert_override(task.id, instant, {"deleted_at": now_utc()})

        stored = await self.store.get_override(task.id, instant)
        if stored is None or not stored.is_deleted or stored.is_superseded:
            raise PersistenceError(
                f"Occurrence of task {task.id} at {instant.isoformat()} not deleted after write"
            )
        self.logger.info(f"Deleted occurrence of {task.id} at {instant.isoformat()}")
        return RemovalResult(changed=1)

    # ------------------------------------------------------------------
    # Scope: following
    # ------------------------------------------------------------------

    async def _update_following(
        self, task: Task, cut: datetime, sanitized: SanitizedRule, changes: dict[str, Any]
    ) -> MutationResult:
        truncated = with_until(sanitized.rule, cut - ONE_SECOND)
        child = self._build_child(task, cut, sanitized.rule, changes)
        carried = await self._deletions_for_child(task, cut, sanitized, child)

        async with self.store.transaction() as tx:
            await self._persist_exclusions(
                tx, task.id, [instant for instant in sanitized.exclusions if instant < cut]
            )
            await tx.update_task(task.id, {"rrule": truncated})
            await tx.insert_task(child)
            for instant, deleted_at in carried:
                await tx.upsert_override(child.id, instant, {"deleted_at": deleted_at})
            superseded = await tx.supersede_overrides(task.id, cut, inclusive=True)

        stored = await self._read_back_task(task.id)
        if stored.rrule != truncated:
            raise PersistenceError(
                f"Series {task.id} rule reads back as {stored.rrule!r}, expected {truncated!r}"
            )
        stored_child = await self._read_back_task(child.id)
        self._verify_fields(
            stored_child,
            {"start_at": child.start_at, "rrule": child.rrule, "parent_series_id": task.id},
            child.id,
        )

        self.logger.info(
            f"Split series {task.id} at {cut.isoformat()} into {child.id} "
            f"({superseded} override(s) superseded, {len(carried)} deletion(s) carried over)"
        )
        return MutationResult(changed=True, series_id=child.id)

    async def _deletions_for_child(
        self, task: Task, cut: datetime, sanitized: SanitizedRule, child: Task
    ) -> list[tuple[datetime, datetime]]:
        """Deleted occurrences after the cut, mapped onto the child series.

        The child's instants are the original ones shifted by the move of the
        anchor, if any. Deletions the child rule no longer generates are dropped.
        """
        deleted: dict[datetime, datetime] = {}
        for override in await self.store.find_overrides([task.id]):
            if override.is_deleted and override.original_start > cut:
                deleted[override.original_start] = override.deleted_at or now_utc()
        for instant in sanitized.exclusions:
            if instant > cut:
                deleted.setdefault(instant, now_utc())

        if not deleted or child.rrule is None:
            return []

        shift = child.start_at - cut
        carried = []
        for instant, deleted_at in sorted(deleted.items()):
            target = normalize_instant(instant + shift)
            if self.expander.is_occurrence(child.start_at, child.rrule, target):
                carried.append((target, deleted_at))
            else:
                self.logger.debug(
                    f"Not carrying deletion of {task.id} at {instant.isoformat()}: "
                    f"{target.isoformat()} is not an occurrence of {child.id}"
                )
        return carried

    def _build_child(
        self, task: Task, cut: datetime, clean_rule: str, changes: dict[str, Any]
    ) -> Task:
        """Series continuing the original from the cut, with the diff applied."""
        anchor = normalize_instant(changes.get("start_at") or cut)
        end = changes.get("end_at") or anchor + task.duration
        self._check_window(anchor, end)

        if "rrule" in changes:
            rule = changes["rrule"]
            if rule is not None:
                rule = self._validate_rule(rule, anchor)
        elif get_part(split_rule(clean_rule), "COUNT") is not None:
            # The child must not restart the count; bound it where the original ends
            last = self.expander.last_occurrence(task.start_at, clean_rule)
            rule = with_until(clean_rule, last) if last is not None else clean_rule
        else:
            rule = clean_rule

        fields = task.template_fields()
        fields.update({name: value for name, value in changes.items() if name in DESCRIPTIVE_FIELDS})

        return Task(
            id=str(uuid.uuid4()),
            start_at=anchor,
            end_at=end,
            rrule=rule,
            parent_series_id=task.id,
            **fields,
        )

    async def _remove_following(
        self, task: Task, cut: datetime, sanitized: SanitizedRule
    ) -> RemovalResult:
        truncated = with_until(sanitized.rule, cut - ONE_SECOND)

        async with self.store.transaction() as tx:
            changed = await self._persist_exclusions(
                tx, task.id, [instant for instant in sanitized.exclusions if instant < cut]
            )
            changed += await tx.update_task(task.id, {"rrule": truncated})
            await tx.upsert_override(task.id, cut, {"deleted_at": now_utc()})
            changed += 1
            changed += await tx.supersede_overrides(task.id, cut, inclusive=False)

        stored = await self._read_back_task(task.id)
        if stored.rrule != truncated:
            raise PersistenceError(
                f"Series {task.id} rule reads back as {stored.rrule!r}, expected {truncated!r}"
            )
        marker = await self.store.get_override(task.id, cut)
        if marker is None or not marker.is_deleted:
            raise PersistenceError(f"Deletion marker for {task.id} at {cut.isoformat()} missing")

        self.logger.info(f"Truncated series {task.id} before {cut.isoformat()}")
        return RemovalResult(changed=changed)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _persist_exclusions(
        self, tx: StoreTransaction, series_id: str, exclusions: list[datetime]
    ) -> int:
        """Carry legacy EXDATE exclusions over as deletion overrides before a rule rewrite."""
        deleted_at = now_utc()
        for instant in exclusions:
            await tx.upsert_override(series_id, instant, {"deleted_at": deleted_at})
        if exclusions:
            self.logger.info(
                f"Converted {len(exclusions)} legacy exclusion(s) of {series_id} to overrides"
            )
        return len(exclusions)

    async def _ensure_not_deleted(
        self, task: Task, instant: datetime, sanitized: SanitizedRule
    ) -> Optional[TaskOverride]:
        """Return the live override at ``instant``; raise if the occurrence is deleted."""
        existing = await self.store.get_override(task.id, instant)
        live = existing if existing is not None and not existing.is_superseded else None
        if (live is not None and live.is_deleted) or instant in set(sanitized.exclusions):
            raise NotFoundError(
                f"Occurrence of task {task.id} at {instant.isoformat()} has been deleted"
            )
        return live

    async def _read_back_task(self, task_id: str) -> Task:
        stored = await self.store.get_task(task_id)
        if stored is None:
            raise PersistenceError(f"Task {task_id} missing after write")
        return stored

    @staticmethod
    def _verify_fields(stored: Any, expected: dict[str, Any], label: str) -> None:
        mismatched = [name for name, value in expected.items() if getattr(stored, name) != value]
        if mismatched:
            raise PersistenceError(
                f"Read-back mismatch for {label} on field(s): {', '.join(sorted(mismatched))}"
            )
