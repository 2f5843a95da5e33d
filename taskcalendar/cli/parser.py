"""Command-line argument parsing for the task calendar."""

import argparse
from datetime import datetime
from pathlib import Path

from dateutil import parser as date_parser

from ..utils.helpers import ensure_utc

LOG_LEVELS = ["DEBUG", "VERBOSE", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 date or date-time for command-line arguments.

    Naive values are read as UTC.

    Raises:
        argparse.ArgumentTypeError: If the value cannot be parsed

    Example:
        >>> parse_instant("2026-01-01")
        datetime.datetime(2026, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    try:
        return ensure_utc(date_parser.isoparse(value))
    except ValueError as err:
        raise argparse.ArgumentTypeError(
            f"Invalid instant: {value}. Use ISO-8601, e.g. 2026-01-01T15:00:00Z"
        ) from err


def create_parser() -> argparse.ArgumentParser:
    """Create the command line argument parser.

    Returns:
        argparse.ArgumentParser with the ``occurrences`` and ``migrate-rules``
        subcommands plus global database and logging options

    Example:
        >>> parser = create_parser()
        >>> args = parser.parse_args(["occurrences", "--from", "2026-01-01", "--to", "2026-03-01"])
    """
    parser = argparse.ArgumentParser(
        prog="taskcalendar",
        description="Task Calendar - recurring task expansion and exception management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s occurrences --from 2026-01-01 --to 2026-03-01          # List occurrences
  %(prog)s occurrences --from 2026-01-01 --to 2026-03-01 --json   # Same, as JSON
  %(prog)s migrate-rules                                          # Move legacy EXDATEs into overrides
        """,
    )

    parser.add_argument(
        "--version", action="version", version="%(prog)s 1.0.0", help="Show version information"
    )

    parser.add_argument(
        "--database", type=Path, help="SQLite database file (overrides configuration)"
    )

    # Logging arguments
    logging_group = parser.add_argument_group("logging", "Logging configuration options")

    logging_group.add_argument(
        "--log-level", choices=LOG_LEVELS, help="Set both console and file log levels"
    )

    logging_group.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    logging_group.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only show errors on console (sets console level to ERROR)",
    )

    logging_group.add_argument("--log-dir", type=Path, help="Write log files to this directory")

    logging_group.add_argument(
        "--no-log-colors", action="store_true", help="Disable colored console output"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    occurrences = subparsers.add_parser(
        "occurrences", help="List occurrences intersecting a time range"
    )
    occurrences.add_argument(
        "--from", dest="range_from", type=parse_instant, required=True, help="Range start (inclusive)"
    )
    occurrences.add_argument(
        "--to", dest="range_to", type=parse_instant, required=True, help="Range end (exclusive)"
    )
    occurrences.add_argument("--json", action="store_true", help="Print occurrences as JSON")

    subparsers.add_parser(
        "migrate-rules", help="Convert EXDATE clauses embedded in stored rules to deletion overrides"
    )

    return parser


__all__ = [
    "create_parser",
    "parse_instant",
]
