"""Entry point for `python -m taskcalendar` and the ``taskcalendar`` console script."""

import asyncio
import sys

from .cli import main_entry


def main() -> int:
    """Run the CLI and return its exit code."""
    try:
        return asyncio.run(main_entry())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
