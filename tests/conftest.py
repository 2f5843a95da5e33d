"""Shared fixtures for task calendar tests."""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from taskcalendar.config.settings import TaskCalendarSettings, reset_settings
from taskcalendar.service import TaskCalendarService
from taskcalendar.store.database import SQLiteTaskStore
from taskcalendar.store.models import Task

from .factories import make_task


@pytest.fixture(autouse=True)
def _reset_global_settings():
    """Keep the lazily created global settings from leaking between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def mock_logger() -> MagicMock:
    """Logger double for asserting on log calls."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def test_settings(tmp_path: Path) -> TaskCalendarSettings:
    """Settings isolated to a temporary directory."""
    return TaskCalendarSettings(
        data_dir=tmp_path,
        config_dir=tmp_path / "config",
        database_file=tmp_path / "tasks.db",
    )


@pytest.fixture
async def temp_store(test_settings: TaskCalendarSettings) -> AsyncGenerator[SQLiteTaskStore, None]:
    """Initialized SQLite store in a temporary file."""
    store = SQLiteTaskStore(test_settings.database_path)
    await store.initialize()
    yield store


@pytest.fixture
async def service(
    temp_store: SQLiteTaskStore, test_settings: TaskCalendarSettings
) -> TaskCalendarService:
    """Service wired to the temporary store."""
    return TaskCalendarService(temp_store, test_settings)


@pytest.fixture
async def weekly_series(service: TaskCalendarService) -> Task:
    """Weekly Thursday 15:00Z series anchored 2026-01-01, two hours long."""
    return await service.create_task(make_task("weekly"))
