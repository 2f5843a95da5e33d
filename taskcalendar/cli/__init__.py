"""CLI module for the task calendar.

Provides argument parsing, settings overrides and command dispatch.
"""

import logging
import sys
from typing import Optional

from ..config.settings import get_settings
from ..exceptions import TaskCalendarError
from ..service import TaskCalendarService
from ..store.database import SQLiteTaskStore
from ..utils.logging import apply_command_line_overrides, setup_logging
from .commands import run_migrate_rules, run_occurrences
from .parser import create_parser, parse_instant

logger = logging.getLogger(__name__)

COMMANDS = {
    "occurrences": run_occurrences,
    "migrate-rules": run_migrate_rules,
}


async def main_entry(argv: Optional[list[str]] = None) -> int:
    """Main entry point with argument parsing.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.database:
        settings.database_file = args.database
    apply_command_line_overrides(settings, args)
    setup_logging(settings)

    service = TaskCalendarService(SQLiteTaskStore(settings.database_path), settings)
    try:
        return await COMMANDS[args.command](service, args)
    except TaskCalendarError as e:
        logger.debug(f"Command {args.command} failed", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


__all__ = [
    "create_parser",
    "main_entry",
    "parse_instant",
]
