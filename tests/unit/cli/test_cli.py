"""Unit tests for CLI parsing and command dispatch."""

import argparse
import json
import logging
from unittest.mock import patch

import pytest

from taskcalendar.cli import main_entry
from taskcalendar.cli.commands import format_occurrence
from taskcalendar.cli.parser import create_parser, parse_instant
from taskcalendar.recurrence.materializer import OccurrenceMaterializer
from taskcalendar.store.database import SQLiteTaskStore
from tests.factories import make_task, utc

pytestmark = [pytest.mark.unit]


@pytest.fixture
def cli_settings(test_settings):
    """Route main_entry to isolated settings and restore package logging afterwards."""
    logger = logging.getLogger("taskcalendar")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    with patch("taskcalendar.cli.get_settings", return_value=test_settings):
        yield test_settings
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestParseInstant:
    """Argument type for range bounds."""

    def test_parse_instant_when_date_only_then_utc_midnight(self):
        assert parse_instant("2026-01-01") == utc(2026, 1, 1)

    def test_parse_instant_when_offset_then_converted_to_utc(self):
        assert parse_instant("2026-01-01T17:00:00+02:00") == utc(2026, 1, 1, 15, 0)

    def test_parse_instant_when_garbage_then_argument_type_error(self):
        with pytest.raises(argparse.ArgumentTypeError, match="Invalid instant"):
            parse_instant("next thursday")


class TestCreateParser:
    """Subcommands and global options."""

    def test_parser_when_occurrences_then_range_parsed(self):
        args = create_parser().parse_args(["occurrences", "--from", "2026-01-01", "--to", "2026-02-01", "--json"])

        assert args.command == "occurrences"
        assert args.range_from == utc(2026, 1, 1)
        assert args.range_to == utc(2026, 2, 1)
        assert args.json is True

    def test_parser_when_no_command_then_exits(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_parser_when_range_missing_then_exits(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["occurrences", "--from", "2026-01-01"])

    def test_parser_when_logging_flags_then_parsed(self, tmp_path):
        args = create_parser().parse_args(
            ["--verbose", "--log-dir", str(tmp_path), "--database", str(tmp_path / "x.db"), "migrate-rules"]
        )

        assert args.verbose is True
        assert args.log_dir == tmp_path
        assert args.database == tmp_path / "x.db"


class TestCommands:
    """main_entry against a temporary database."""

    def test_format_occurrence_when_recurring_then_marked(self):
        occurrence = OccurrenceMaterializer().materialize(make_task(), None, utc(2026, 1, 1), utc(2026, 1, 2))[0]

        line = format_occurrence(occurrence)

        assert line.startswith("2026-01-01T15:00:00+00:00")
        assert "Acme Lawn Care (task-1) [recurring]" in line

    async def test_occurrences_when_json_then_serialized(self, cli_settings, capsys):
        store = SQLiteTaskStore(cli_settings.database_path)
        await store.create_task(make_task())

        exit_code = await main_entry(["occurrences", "--from", "2026-01-01", "--to", "2026-01-16", "--json"])

        payload = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert [item["start"] for item in payload] == ["2026-01-01T15:00:00+00:00", "2026-01-08T15:00:00+00:00", "2026-01-15T15:00:00+00:00"]

    async def test_occurrences_when_text_then_count_printed(self, cli_settings, capsys):
        exit_code = await main_entry(["occurrences", "--from", "2026-01-01", "--to", "2026-01-16"])

        assert exit_code == 0
        assert "0 occurrence(s)" in capsys.readouterr().out

    async def test_occurrences_when_range_inverted_then_error_exit(self, cli_settings, capsys):
        exit_code = await main_entry(["occurrences", "--from", "2026-02-01", "--to", "2026-01-01"])

        assert exit_code == 1
        assert "Error: Range start must be before range end" in capsys.readouterr().err

    async def test_migrate_rules_when_legacy_rule_then_report_printed(self, cli_settings, capsys):
        store = SQLiteTaskStore(cli_settings.database_path)
        await store.create_task(make_task("legacy", rrule="FREQ=WEEKLY;BYDAY=TH;EXDATE=20260115"))

        exit_code = await main_entry(["migrate-rules"])

        assert exit_code == 0
        assert "total=1 fixed=1 errors=0 exclusions_created=1" in capsys.readouterr().out
