"""Command implementations for the task calendar CLI."""

import argparse
import json
import logging

from ..service import TaskCalendarService
from ..store.models import Occurrence

logger = logging.getLogger(__name__)


def format_occurrence(occurrence: Occurrence) -> str:
    """One human-readable line per occurrence."""
    markers = []
    if occurrence.is_recurring:
        markers.append("recurring")
    if occurrence.is_exception:
        markers.append("modified")
    suffix = f" [{', '.join(markers)}]" if markers else ""
    return (
        f"{occurrence.start.isoformat()} - {occurrence.end.isoformat()}  "
        f"{occurrence.customer_name} ({occurrence.task_id}){suffix}"
    )


async def run_occurrences(service: TaskCalendarService, args: argparse.Namespace) -> int:
    """List occurrences in ``[args.range_from, args.range_to)``.

    Returns:
        Exit code (0 for success)
    """
    occurrences = await service.expand_range(args.range_from, args.range_to)

    if args.json:
        print(json.dumps([occurrence.model_dump(mode="json") for occurrence in occurrences], indent=2))
    else:
        for occurrence in occurrences:
            print(format_occurrence(occurrence))
        print(f"{len(occurrences)} occurrence(s)")
    return 0


async def run_migrate_rules(service: TaskCalendarService, args: argparse.Namespace) -> int:  # noqa: ARG001
    """Migrate legacy EXDATE rules and print the report.

    Returns:
        Exit code (0 when every task migrated, 1 if any failed)
    """
    report = await service.migrate_legacy_rules()
    print(
        f"Legacy rules: total={report.total} fixed={report.fixed} errors={report.errors} "
        f"exclusions_created={report.exclusions_created}"
    )
    return 1 if report.errors else 0
