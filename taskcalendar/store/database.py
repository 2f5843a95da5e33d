"""SQLite persistence for tasks and per-occurrence overrides."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from ..exceptions import PersistenceError
from ..utils.helpers import from_storage, normalize_instant, now_utc, to_storage
from .models import DESCRIPTIVE_FIELDS, TIMING_FIELDS, Task, TaskOverride

logger = logging.getLogger(__name__)

TASK_COLUMNS: tuple[str, ...] = (
    "id",
    "start_at",
    "end_at",
    "rrule",
    *DESCRIPTIVE_FIELDS,
    "parent_series_id",
    "deleted_at",
    "created_at",
    "updated_at",
)

# Columns an override upsert may write
OVERRIDE_VALUE_COLUMNS: tuple[str, ...] = (*TIMING_FIELDS, *DESCRIPTIVE_FIELDS, "deleted_at")

_DATETIME_COLUMNS = frozenset(
    {"start_at", "end_at", "original_start", "deleted_at", "superseded_at", "created_at", "updated_at"}
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        start_at TEXT NOT NULL,
        end_at TEXT NOT NULL,
        rrule TEXT,
        customer_name TEXT NOT NULL,
        customer_id TEXT,
        phone TEXT,
        email TEXT,
        service_id TEXT,
        service_price_cents INTEGER,
        address TEXT,
        description TEXT,
        notes TEXT,
        all_day INTEGER NOT NULL DEFAULT 0,
        team_id TEXT,
        lead_source_id TEXT,
        created_by_id TEXT,
        parent_series_id TEXT REFERENCES tasks(id),
        deleted_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_tasks_range
    ON tasks(start_at, end_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_tasks_parent_series
    ON tasks(parent_series_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS task_overrides (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        series_id TEXT NOT NULL REFERENCES tasks(id),
        original_start TEXT NOT NULL,
        start_at TEXT,
        end_at TEXT,
        customer_name TEXT,
        customer_id TEXT,
        phone TEXT,
        email TEXT,
        service_id TEXT,
        service_price_cents INTEGER,
        address TEXT,
        description TEXT,
        notes TEXT,
        all_day INTEGER,
        team_id TEXT,
        lead_source_id TEXT,
        created_by_id TEXT,
        deleted_at TEXT,
        superseded_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (series_id, original_start)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_task_overrides_series
    ON task_overrides(series_id, original_start)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_task_overrides_moved
    ON task_overrides(start_at)
    WHERE superseded_at IS NULL AND start_at IS NOT NULL
    """,
)


def _to_column(name: str, value: Any) -> Any:
    """Convert a model value to its SQLite representation."""
    if value is None:
        return None
    if name == "original_start":
        return to_storage(normalize_instant(value))
    if name in _DATETIME_COLUMNS:
        return to_storage(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _row_to_task(row: aiosqlite.Row) -> Task:
    data = dict(row)
    for name in data.keys() & _DATETIME_COLUMNS:
        data[name] = from_storage(data[name])
    data["all_day"] = bool(data["all_day"])
    return Task(**data)


def _row_to_override(row: aiosqlite.Row) -> TaskOverride:
    data = dict(row)
    data.pop("id", None)
    for name in data.keys() & _DATETIME_COLUMNS:
        data[name] = from_storage(data[name])
    if data["all_day"] is not None:
        data["all_day"] = bool(data["all_day"])
    return TaskOverride(**data)


def _check_columns(columns: Iterable[str], allowed: tuple[str, ...]) -> None:
    unknown = set(columns) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")


class SQLiteTransaction:
    """Writes bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> int:
        if not changes:
            return 0
        _check_columns(changes, TASK_COLUMNS)

        values = dict(changes)
        values["updated_at"] = now_utc()
        assignments = ", ".join(f"{name} = ?" for name in values)
        cursor = await self.db.execute(
            f"UPDATE tasks SET {assignments} WHERE id = ?",  # noqa: S608
            (*(_to_column(name, value) for name, value in values.items()), task_id),
        )
        return cursor.rowcount

    async def insert_task(self, task: Task) -> None:
        now = now_utc()
        data = task.model_dump()
        data["created_at"] = data.get("created_at") or now
        data["updated_at"] = data.get("updated_at") or now

        placeholders = ", ".join("?" for _ in TASK_COLUMNS)
        await self.db.execute(
            f"INSERT INTO tasks ({', '.join(TASK_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
            tuple(_to_column(name, data[name]) for name in TASK_COLUMNS),
        )

    async def upsert_override(
        self, series_id: str, original_start: datetime, changes: dict[str, Any]
    ) -> None:
        _check_columns(changes, OVERRIDE_VALUE_COLUMNS)

        now = to_storage(now_utc())
        columns = ["series_id", "original_start", *changes, "created_at", "updated_at"]
        values = [
            series_id,
            _to_column("original_start", original_start),
            *(_to_column(name, value) for name, value in changes.items()),
            now,
            now,
        ]

        # A revived superseded row starts from a clean slate
        assignments = []
        for name in OVERRIDE_VALUE_COLUMNS:
            if name in changes:
                assignments.append(f"{name} = excluded.{name}")
            else:
                assignments.append(
                    f"{name} = CASE WHEN task_overrides.superseded_at IS NULL "
                    f"THEN task_overrides.{name} ELSE NULL END"
                )
        assignments.append("superseded_at = NULL")
        assignments.append("updated_at = excluded.updated_at")

        await self.db.execute(
            f"""
            INSERT INTO task_overrides ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT (series_id, original_start) DO UPDATE SET {", ".join(assignments)}
            """,  # noqa: S608
            tuple(values),
        )

    async def supersede_overrides(
        self, series_id: str, after: datetime, inclusive: bool = False
    ) -> int:
        operator = ">=" if inclusive else ">"
        now = to_storage(now_utc())
        cursor = await self.db.execute(
            f"""
            UPDATE task_overrides
            SET superseded_at = ?, updated_at = ?
            WHERE series_id = ? AND superseded_at IS NULL AND original_start {operator} ?
            """,  # noqa: S608
            (now, now, series_id, _to_column("original_start", after)),
        )
        return cursor.rowcount


class SQLiteTaskStore:
    """Task store backed by a SQLite file through aiosqlite.

    Each operation opens its own connection. Instants are stored as
    fixed-width UTC ISO strings so range predicates compare lexicographically.
    """

    def __init__(self, database_path: Union[Path, str]):
        """Initialize the store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.info(f"Task store initialized (lazy): {self.database_path}")

    async def initialize(self) -> None:
        """Create the schema if needed.

        Raises:
            PersistenceError: If the database cannot be opened or migrated
        """
        if self._initialized:
            return

        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            if self._initialized:
                return
            try:
                async with aiosqlite.connect(str(self.database_path)) as db:
                    # WAL lets readers proceed while a split transaction is open
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    await db.execute("PRAGMA foreign_keys=ON")
                    for statement in _SCHEMA:
                        await db.execute(statement)
                    await db.commit()
            except aiosqlite.Error as e:
                logger.exception("Failed to initialize task database")
                raise PersistenceError(f"Failed to initialize database: {e}") from e

            self._initialized = True
            logger.info("Task database schema initialized successfully")

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        await self.initialize()
        async with aiosqlite.connect(str(self.database_path)) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            yield db

    async def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        try:
            async with self._connect() as db:
                cursor = await db.execute(query, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            logger.exception("Task database query failed")
            raise PersistenceError(f"Database query failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLiteTransaction]:
        """Open a write transaction committed on success, rolled back on any error.

        Raises:
            PersistenceError: If a write fails or the transaction cannot commit
        """
        await self.initialize()
        try:
            db = await aiosqlite.connect(str(self.database_path), isolation_level=None)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to open database: {e}") from e

        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            await db.execute("BEGIN IMMEDIATE")
        except aiosqlite.Error as e:
            await db.close()
            raise PersistenceError(f"Failed to begin transaction: {e}") from e

        try:
            yield SQLiteTransaction(db)
        except aiosqlite.Error as e:
            await db.execute("ROLLBACK")
            logger.exception("Transaction rolled back")
            raise PersistenceError(f"Write failed, transaction rolled back: {e}") from e
        except BaseException:
            await db.execute("ROLLBACK")
            logger.warning("Transaction rolled back")
            raise
        else:
            try:
                await db.execute("COMMIT")
            except aiosqlite.Error as e:
                await db.execute("ROLLBACK")
                raise PersistenceError(f"Commit failed: {e}") from e
        finally:
            await db.close()

    async def create_task(self, task: Task) -> Task:
        """Insert a task in its own transaction and return the stored row."""
        async with self.transaction() as tx:
            await tx.insert_task(task)

        stored = await self.get_task(task.id)
        if stored is None:
            raise PersistenceError(f"Task {task.id} missing after insert")
        logger.debug(f"Created task {task.id} (rrule={task.rrule!r})")
        return stored

    async def get_task(self, task_id: str) -> Optional[Task]:
        rows = await self._fetch_all("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return _row_to_task(rows[0]) if rows else None

    async def find_tasks_in_range(self, range_from: datetime, range_to: datetime) -> list[Task]:
        from_str = to_storage(range_from)
        to_str = to_storage(range_to)
        logger.debug(f"Task query - window [{from_str}, {to_str})")

        rows = await self._fetch_all(
            """
            SELECT * FROM tasks
            WHERE deleted_at IS NULL
              AND (
                (start_at < ? AND (rrule IS NOT NULL OR end_at > ?))
                OR (
                  rrule IS NOT NULL
                  AND id IN (
                    SELECT series_id FROM task_overrides
                    WHERE superseded_at IS NULL
                      AND deleted_at IS NULL
                      AND start_at IS NOT NULL
                      AND start_at < ?
                      AND (end_at IS NULL OR end_at > ?)
                  )
                )
              )
            ORDER BY start_at ASC, id ASC
            """,
            (to_str, from_str, to_str, from_str),
        )
        return [_row_to_task(row) for row in rows]

    async def find_overrides(
        self, series_ids: Iterable[str], include_superseded: bool = False
    ) -> list[TaskOverride]:
        ids = list(dict.fromkeys(series_ids))
        if not ids:
            return []

        query = f"SELECT * FROM task_overrides WHERE series_id IN ({', '.join('?' for _ in ids)})"  # noqa: S608
        if not include_superseded:
            query += " AND superseded_at IS NULL"
        query += " ORDER BY series_id, original_start"

        rows = await self._fetch_all(query, tuple(ids))
        return [_row_to_override(row) for row in rows]

    async def get_override(
        self, series_id: str, original_start: datetime
    ) -> Optional[TaskOverride]:
        rows = await self._fetch_all(
            "SELECT * FROM task_overrides WHERE series_id = ? AND original_start = ?",
            (series_id, _to_column("original_start", original_start)),
        )
        return _row_to_override(rows[0]) if rows else None

    async def find_child_series(self, parent_series_id: str) -> list[Task]:
        rows = await self._fetch_all(
            "SELECT * FROM tasks WHERE parent_series_id = ? ORDER BY start_at ASC, id ASC",
            (parent_series_id,),
        )
        return [_row_to_task(row) for row in rows]

    async def find_legacy_rule_tasks(self) -> list[Task]:
        rows = await self._fetch_all(
            """
            SELECT * FROM tasks
            WHERE deleted_at IS NULL
              AND rrule IS NOT NULL
              AND lower(rrule) LIKE '%exdate%'
            ORDER BY created_at ASC, id ASC
            """
        )
        return [_row_to_task(row) for row in rows]
