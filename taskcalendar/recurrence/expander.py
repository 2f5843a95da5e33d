"""RRULE expansion for recurring tasks."""

import logging
from datetime import datetime, timedelta
from typing import Any, NamedTuple, Optional

from dateutil.rrule import rrule, rrulestr, rruleset

from ..utils.helpers import (
    ensure_utc,
    format_rrule_datetime,
    intersects,
    normalize_instant,
    now_utc,
)
from ..utils.logging import resolve_logger
from .exceptions import RRuleExpansionError, RRuleOccurrenceLimitError, RRuleParseError
from .rules import get_part, join_rule, normalize_parts, split_rule, validate_parts


class OccurrenceWindow(NamedTuple):
    """A generated occurrence: start instant and start + duration."""

    start: datetime
    end: datetime


class RecurrenceExpander:
    """Expands a task's rule into occurrence windows using python-dateutil.

    The anchor instant and the stored RRULE value are composed into a
    ``DTSTART``/``RRULE`` pair and handed to ``rrulestr``, so the RFC edge
    policies come from dateutil:

    - ``BYMONTHDAY=31`` skips months without a 31st (never rolls over)
    - ``BYMONTHDAY=-1`` is the real last day of each month
    - ``BYDAY=SA;BYSETPOS=-1`` (or ``BYDAY=-1SA``) is the last Saturday
    - ``UNTIL`` bounds generation itself, inclusively

    Expansion is deterministic for a given (anchor, duration, rule, range).
    """

    def __init__(self, settings: Any = None, logger: Optional[logging.Logger] = None):
        """Initialize the expander.

        Args:
            settings: Settings object; ``rrule_max_occurrences`` is honored if present
            logger: Optional logger (defaults to this module's logger)
        """
        self.settings = settings
        self.max_occurrences = getattr(settings, "rrule_max_occurrences", 2000)
        self.logger = resolve_logger(logger, __name__)

    def build_rule(self, anchor: datetime, rule_string: str) -> rrule:
        """Compose the anchor and rule value into a dateutil rule.

        Raises:
            RRuleParseError: If the rule cannot be read
        """
        parts = normalize_parts(split_rule(rule_string))
        composed = f"DTSTART:{format_rrule_datetime(anchor)}\nRRULE:{join_rule(parts)}"

        try:
            parsed = rrulestr(composed)
        except (ValueError, TypeError, KeyError, IndexError) as e:
            raise RRuleParseError(f"Invalid RRULE '{rule_string}': {e}") from e

        if isinstance(parsed, rruleset):
            raise RRuleParseError(f"Expected a single RRULE, got a rule set: '{rule_string}'")
        return parsed

    def validate_rule(self, rule_string: str, anchor: Optional[datetime] = None) -> str:
        """Validate a rule submitted on write and return its normalized form.

        Args:
            rule_string: RRULE value string
            anchor: Anchor the rule will be used with (defaults to now)

        Raises:
            RRuleParseError: With a message describing the problem
        """
        normalized = join_rule(validate_parts(split_rule(rule_string)))
        check_anchor = normalize_instant(anchor if anchor is not None else now_utc())
        rule = self.build_rule(check_anchor, normalized)

        # Reject rules that can never produce an occurrence (e.g. BYMONTH=2;BYMONTHDAY=30)
        try:
            first = rule.after(check_anchor, inc=True)
        except (ValueError, TypeError) as e:
            raise RRuleParseError(f"Invalid RRULE '{rule_string}': {e}") from e
        if first is None and get_part(split_rule(normalized), "UNTIL") is None:
            raise RRuleParseError(f"RRULE never produces an occurrence: '{rule_string}'")

        return normalized

    def expand(
        self,
        anchor: datetime,
        duration: timedelta,
        rule_string: str,
        range_from: datetime,
        range_to: datetime,
    ) -> list[OccurrenceWindow]:
        """Expand a rule into windows intersecting ``[range_from, range_to)``.

        Args:
            anchor: Series anchor instant (DTSTART)
            duration: Occurrence duration (task end - start)
            rule_string: RRULE value string (no EXDATE clauses)
            range_from: Inclusive range start
            range_to: Exclusive range end

        Returns:
            Ascending occurrence windows

        Raises:
            RRuleExpansionError: If the rule cannot be parsed or generated
            RRuleOccurrenceLimitError: If more than ``max_occurrences`` windows fall in the range
        """
        range_from = ensure_utc(range_from)
        range_to = ensure_utc(range_to)
        if range_from >= range_to:
            return []

        try:
            rule = self.build_rule(anchor, rule_string)
            # Occurrences that start before the range but are still running overlap it
            raw_starts = rule.between(range_from - duration, range_to, inc=True)
        except RRuleExpansionError:
            raise
        except Exception as e:
            raise RRuleExpansionError(f"Failed to expand RRULE '{rule_string}': {e}") from e

        windows = []
        for raw in raw_starts:
            start = ensure_utc(raw)
            end = start + duration
            if intersects(start, end, range_from, range_to):
                windows.append(OccurrenceWindow(start, end))

        if len(windows) > self.max_occurrences:
            self.logger.warning(
                "RRULE expansion exceeds %d occurrences (rule=%s, anchor=%s, found=%d)",
                self.max_occurrences,
                rule_string,
                anchor.isoformat(),
                len(windows),
            )
            raise RRuleOccurrenceLimitError(
                f"Range produces {len(windows)} occurrences of one series "
                f"(limit {self.max_occurrences}); narrow the range"
            )

        self.logger.debug(
            "RRULE expansion result: rule=%s anchor=%s window=[%s, %s) occurrences=%d",
            rule_string,
            anchor.isoformat(),
            range_from.isoformat(),
            range_to.isoformat(),
            len(windows),
        )
        return windows

    def is_occurrence(self, anchor: datetime, rule_string: str, instant: datetime) -> bool:
        """True when ``instant`` (to the second) is generated by the rule.

        Raises:
            RRuleExpansionError: If the rule cannot be parsed or generated
        """
        target = normalize_instant(instant)
        try:
            rule = self.build_rule(anchor, rule_string)
            found = rule.after(target, inc=True)
        except RRuleExpansionError:
            raise
        except Exception as e:
            raise RRuleExpansionError(f"Failed to evaluate RRULE '{rule_string}': {e}") from e
        return found is not None and ensure_utc(found) == target

    def last_occurrence(self, anchor: datetime, rule_string: str) -> Optional[datetime]:
        """Last instant of a bounded (UNTIL or COUNT) rule, or None if unbounded or empty.

        Raises:
            RRuleExpansionError: If the rule cannot be parsed or generated
        """
        parts = split_rule(rule_string)
        if get_part(parts, "UNTIL") is None and get_part(parts, "COUNT") is None:
            return None

        last: Optional[datetime] = None
        try:
            for generated in self.build_rule(anchor, rule_string):
                last = generated
        except RRuleExpansionError:
            raise
        except Exception as e:
            raise RRuleExpansionError(f"Failed to evaluate RRULE '{rule_string}': {e}") from e
        return ensure_utc(last) if last is not None else None
