"""Unit tests for the SQLite task store."""

from unittest.mock import patch

import aiosqlite
import pytest

from taskcalendar.exceptions import PersistenceError
from taskcalendar.store.database import SQLiteTaskStore
from tests.factories import WEEKLY_ANCHOR, make_task, utc

pytestmark = [pytest.mark.unit]

INSTANT = utc(2026, 1, 29, 15, 0)


class TestTaskStoreTasks:
    """Task rows."""

    async def test_create_task_when_valid_then_round_trips(self, temp_store):
        task = make_task(notes="side gate", all_day=True)

        stored = await temp_store.create_task(task)

        assert stored.id == task.id
        assert stored.start_at == WEEKLY_ANCHOR
        assert stored.rrule == "FREQ=WEEKLY;BYDAY=TH"
        assert stored.notes == "side gate"
        assert stored.all_day is True
        assert stored.created_at is not None

    async def test_get_task_when_missing_then_none(self, temp_store):
        assert await temp_store.get_task("nope") is None

    async def test_find_tasks_in_range_when_standalone_then_overlap_filtered(self, temp_store):
        await temp_store.create_task(make_task("inside", start_at=utc(2026, 1, 10, 9, 0), rrule=None))
        await temp_store.create_task(make_task("before", start_at=utc(2025, 12, 1, 9, 0), rrule=None))
        await temp_store.create_task(make_task("after", start_at=utc(2026, 3, 1, 9, 0), rrule=None))

        tasks = await temp_store.find_tasks_in_range(utc(2026, 1, 1), utc(2026, 2, 1))

        assert [task.id for task in tasks] == ["inside"]

    async def test_find_tasks_in_range_when_series_anchored_earlier_then_included(self, temp_store):
        await temp_store.create_task(make_task("series", start_at=utc(2025, 1, 2, 15, 0)))
        await temp_store.create_task(make_task("future-series", start_at=utc(2026, 6, 4, 15, 0)))

        tasks = await temp_store.find_tasks_in_range(utc(2026, 1, 1), utc(2026, 2, 1))

        assert [task.id for task in tasks] == ["series"]

    async def test_find_tasks_in_range_when_override_moved_into_range_then_series_included(self, temp_store):
        await temp_store.create_task(make_task("march", start_at=utc(2026, 3, 5, 15, 0)))
        await temp_store.create_task(make_task("april", start_at=utc(2026, 4, 2, 15, 0)))
        async with temp_store.transaction() as tx:
            await tx.upsert_override(
                "march",
                utc(2026, 3, 5, 15, 0),
                {"start_at": utc(2026, 2, 26, 15, 0), "end_at": utc(2026, 2, 26, 17, 0)},
            )
            # Moved, but still outside February
            await tx.upsert_override("april", utc(2026, 4, 2, 15, 0), {"start_at": utc(2026, 3, 3, 15, 0)})

        tasks = await temp_store.find_tasks_in_range(utc(2026, 2, 1), utc(2026, 3, 1))

        assert [task.id for task in tasks] == ["march"]

    async def test_find_tasks_in_range_when_moved_override_superseded_then_series_excluded(self, temp_store):
        await temp_store.create_task(make_task("march", start_at=utc(2026, 3, 5, 15, 0)))
        async with temp_store.transaction() as tx:
            await tx.upsert_override("march", utc(2026, 3, 5, 15, 0), {"start_at": utc(2026, 2, 26, 15, 0)})
            await tx.supersede_overrides("march", utc(2026, 3, 5, 15, 0), inclusive=True)

        assert await temp_store.find_tasks_in_range(utc(2026, 2, 1), utc(2026, 3, 1)) == []

    async def test_find_tasks_in_range_when_deleted_then_excluded(self, temp_store):
        await temp_store.create_task(make_task(deleted_at=utc(2026, 1, 2)))
        assert await temp_store.find_tasks_in_range(utc(2026, 1, 1), utc(2026, 2, 1)) == []

    async def test_update_task_when_in_transaction_then_columns_written(self, temp_store):
        await temp_store.create_task(make_task())

        async with temp_store.transaction() as tx:
            changed = await tx.update_task("task-1", {"service_price_cents": 5000, "notes": None})

        stored = await temp_store.get_task("task-1")
        assert changed == 1
        assert stored.service_price_cents == 5000
        assert stored.notes is None

    async def test_update_task_when_unknown_column_then_value_error(self, temp_store):
        await temp_store.create_task(make_task())

        with pytest.raises(ValueError, match="Unknown column"):
            async with temp_store.transaction() as tx:
                await tx.update_task("task-1", {"colour": "red"})

    async def test_find_legacy_rule_tasks_when_exdate_embedded_then_found(self, temp_store):
        await temp_store.create_task(make_task("legacy", rrule="FREQ=WEEKLY;BYDAY=TH;EXDATE=20260129"))
        await temp_store.create_task(make_task("clean"))

        tasks = await temp_store.find_legacy_rule_tasks()

        assert [task.id for task in tasks] == ["legacy"]


class TestTaskStoreOverrides:
    """Override rows and the (series, original instant) constraint."""

    async def test_upsert_override_when_new_then_created(self, temp_store):
        await temp_store.create_task(make_task())

        async with temp_store.transaction() as tx:
            await tx.upsert_override("task-1", INSTANT, {"notes": "bring ladder"})

        override = await temp_store.get_override("task-1", INSTANT)
        assert override.notes == "bring ladder"
        assert override.original_start == INSTANT
        assert not override.is_deleted

    async def test_upsert_override_when_existing_then_merged_not_duplicated(self, temp_store):
        await temp_store.create_task(make_task())

        async with temp_store.transaction() as tx:
            await tx.upsert_override("task-1", INSTANT, {"notes": "bring ladder"})
        async with temp_store.transaction() as tx:
            await tx.upsert_override("task-1", INSTANT.replace(microsecond=300000), {"service_price_cents": 1})

        overrides = await temp_store.find_overrides(["task-1"])
        assert len(overrides) == 1
        assert overrides[0].notes == "bring ladder"
        assert overrides[0].service_price_cents == 1

    async def test_upsert_override_when_superseded_then_revived_clean(self, temp_store):
        await temp_store.create_task(make_task())
        async with temp_store.transaction() as tx:
            await tx.upsert_override("task-1", INSTANT, {"notes": "old", "deleted_at": utc(2026, 1, 2)})
            await tx.supersede_overrides("task-1", INSTANT, inclusive=True)

        async with temp_store.transaction() as tx:
            await tx.upsert_override("task-1", INSTANT, {"service_price_cents": 7})

        override = await temp_store.get_override("task-1", INSTANT)
        assert override.superseded_at is None
        assert override.notes is None
        assert override.deleted_at is None
        assert override.service_price_cents == 7

    async def test_supersede_overrides_when_exclusive_then_cut_instant_kept(self, temp_store):
        await temp_store.create_task(make_task())
        async with temp_store.transaction() as tx:
            for day in (22, 29):
                await tx.upsert_override("task-1", utc(2026, 1, day, 15, 0), {"notes": str(day)})
            await tx.upsert_override("task-1", utc(2026, 2, 5, 15, 0), {"notes": "5"})

        async with temp_store.transaction() as tx:
            count = await tx.supersede_overrides("task-1", INSTANT)

        live = await temp_store.find_overrides(["task-1"])
        everything = await temp_store.find_overrides(["task-1"], include_superseded=True)
        assert count == 1
        assert [o.notes for o in live] == ["22", "29"]
        assert len(everything) == 3

    async def test_find_overrides_when_no_series_then_empty(self, temp_store):
        assert await temp_store.find_overrides([]) == []


class TestTaskStoreTransactions:
    """Atomicity and error mapping."""

    async def test_transaction_when_body_raises_then_rolled_back(self, temp_store):
        await temp_store.create_task(make_task())

        with pytest.raises(RuntimeError):
            async with temp_store.transaction() as tx:
                await tx.update_task("task-1", {"service_price_cents": 5000})
                await tx.insert_task(make_task("child"))
                raise RuntimeError("boom")

        assert (await temp_store.get_task("task-1")).service_price_cents == 4000
        assert await temp_store.get_task("child") is None

    async def test_transaction_when_constraint_violated_then_persistence_error_and_rollback(self, temp_store):
        await temp_store.create_task(make_task())

        with pytest.raises(PersistenceError, match="rolled back"):
            async with temp_store.transaction() as tx:
                await tx.update_task("task-1", {"rrule": "FREQ=WEEKLY;BYDAY=TH;UNTIL=20260128T145959Z"})
                await tx.insert_task(make_task("task-1"))

        assert (await temp_store.get_task("task-1")).rrule == "FREQ=WEEKLY;BYDAY=TH"

    async def test_transaction_when_override_for_unknown_series_then_persistence_error(self, temp_store):
        with pytest.raises(PersistenceError):
            async with temp_store.transaction() as tx:
                await tx.upsert_override("ghost", INSTANT, {"notes": "x"})

    async def test_initialize_when_connect_fails_then_persistence_error(self, tmp_path):
        store = SQLiteTaskStore(tmp_path / "broken.db")

        with patch(
            "taskcalendar.store.database.aiosqlite.connect",
            side_effect=aiosqlite.OperationalError("unable to open database file"),
        ), pytest.raises(PersistenceError, match="initialize"):
            await store.initialize()
