"""RRULE value string parsing and composition.

Rules are stored as bare RFC 5545 ``RRULE`` values (``FREQ=WEEKLY;BYDAY=TH``)
with the anchor instant kept separately on the task. These helpers work on the
ordered ``KEY=value`` parts so rewrites (such as injecting ``UNTIL``) keep the
rest of the rule byte-for-byte.
"""

import re
from datetime import UTC, datetime
from typing import Optional

from ..utils.helpers import format_rrule_datetime
from .exceptions import RRuleParseError

RulePart = tuple[str, str]

SUPPORTED_FREQUENCIES = ("WEEKLY", "MONTHLY", "YEARLY")
SUPPORTED_KEYS = (
    "FREQ",
    "INTERVAL",
    "BYDAY",
    "BYMONTHDAY",
    "BYSETPOS",
    "BYMONTH",
    "UNTIL",
    "COUNT",
    "WKST",
)
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

_BYDAY_PATTERN = re.compile(r"^([+-]?[1-5])?(MO|TU|WE|TH|FR|SA|SU)$")
_UNTIL_DATE_PATTERN = re.compile(r"^\d{8}$")
_UNTIL_DATETIME_PATTERN = re.compile(r"^\d{8}T\d{6}Z?$")


def split_rule(rule_string: str) -> list[RulePart]:
    """Split a rule value into ordered ``(KEY, value)`` parts.

    An ``RRULE:`` prefix is tolerated. Keys are upper-cased; values are
    stripped but otherwise untouched.

    Raises:
        RRuleParseError: If the string is empty or a part has no ``=``
    """
    if not rule_string or not rule_string.strip():
        raise RRuleParseError("Empty RRULE string")

    body = rule_string.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:") :]

    parts: list[RulePart] = []
    for raw in body.split(";"):
        raw = raw.strip()
        if not raw:
            continue
        if "=" not in raw:
            raise RRuleParseError(f"Invalid RRULE component '{raw}' in '{rule_string}'")
        key, value = raw.split("=", 1)
        parts.append((key.strip().upper(), value.strip()))

    if not parts:
        raise RRuleParseError("Empty RRULE string")
    return parts


def join_rule(parts: list[RulePart]) -> str:
    """Join parts back into a rule value string."""
    return ";".join(f"{key}={value}" for key, value in parts)


def get_part(parts: list[RulePart], key: str) -> Optional[str]:
    """Return the value of ``key`` or None."""
    for part_key, value in parts:
        if part_key == key:
            return value
    return None


def strip_parts(rule_string: str, keys: tuple[str, ...]) -> str:
    """Remove every part whose key is in ``keys``."""
    return join_rule([part for part in split_rule(rule_string) if part[0] not in keys])


def with_until(rule_string: str, until: datetime) -> str:
    """Bound a rule at ``until`` (inclusive), replacing any UNTIL or COUNT.

    UNTIL and COUNT are mutually exclusive, so both are stripped before the
    new bound is appended.
    """
    parts = [part for part in split_rule(rule_string) if part[0] not in ("UNTIL", "COUNT")]
    parts.append(("UNTIL", format_rrule_datetime(until)))
    return join_rule(parts)


def parse_until(value: str) -> datetime:
    """Parse an UNTIL value as a UTC instant.

    ``YYYYMMDDTHHMMSS`` is read as UTC whether or not it carries ``Z``; a
    date-only ``YYYYMMDD`` bound covers the whole UTC day.

    Raises:
        ValueError: If the value is not an RFC 5545 date or date-time
    """
    value = value.strip().upper()
    if _UNTIL_DATE_PATTERN.match(value):
        return datetime.strptime(value, "%Y%m%d").replace(hour=23, minute=59, second=59, tzinfo=UTC)
    if _UNTIL_DATETIME_PATTERN.match(value):
        return datetime.strptime(value.rstrip("Z"), "%Y%m%dT%H%M%S").replace(tzinfo=UTC)
    raise ValueError(f"Invalid UNTIL value: {value}")


def _parse_int_list(key: str, value: str) -> list[int]:
    try:
        return [int(item) for item in value.split(",") if item.strip()]
    except ValueError as e:
        raise RRuleParseError(f"{key} must be a comma-separated list of integers: {value}") from e


def _clamp_monthday(day: int) -> int:
    if day > 0:
        return min(31, day)
    return max(-31, day)


def normalize_parts(parts: list[RulePart]) -> list[RulePart]:
    """Canonicalize parts for composition with a UTC anchor.

    - BYMONTHDAY values are clamped to 1..31 (or -31..-1)
    - UNTIL is rewritten as a UTC date-time with ``Z``

    Raises:
        RRuleParseError: If BYMONTHDAY or UNTIL cannot be read
    """
    normalized: list[RulePart] = []
    for key, value in parts:
        if key == "BYMONTHDAY":
            days = _parse_int_list(key, value)
            if any(day == 0 for day in days):
                raise RRuleParseError("BYMONTHDAY cannot be 0")
            value = ",".join(str(_clamp_monthday(day)) for day in days)
        elif key == "UNTIL":
            try:
                value = format_rrule_datetime(parse_until(value))
            except ValueError as e:
                raise RRuleParseError(str(e)) from e
        elif key in ("FREQ", "BYDAY", "WKST"):
            value = value.upper()
        normalized.append((key, value))
    return normalized


def validate_parts(parts: list[RulePart]) -> list[RulePart]:  # noqa: PLR0912
    """Check parts against the supported RRULE subset and normalize them.

    Raises:
        RRuleParseError: With a message naming the offending component
    """
    seen: set[str] = set()
    for key, value in parts:
        if key == "EXDATE":
            raise RRuleParseError(
                "EXDATE is not allowed inside a recurrence rule; delete the occurrence instead"
            )
        if key not in SUPPORTED_KEYS:
            raise RRuleParseError(f"Unsupported RRULE component: {key}")
        if key in seen:
            raise RRuleParseError(f"Duplicate RRULE component: {key}")
        seen.add(key)

        if key == "FREQ" and value.upper() not in SUPPORTED_FREQUENCIES:
            raise RRuleParseError(
                f"Unsupported frequency: {value} (expected one of {', '.join(SUPPORTED_FREQUENCIES)})"
            )
        if key in ("INTERVAL", "COUNT"):
            if not value.isdigit() or int(value) < 1:
                raise RRuleParseError(f"{key} must be a positive integer: {value}")
        elif key == "BYDAY":
            for day in value.upper().split(","):
                if not _BYDAY_PATTERN.match(day.strip()):
                    raise RRuleParseError(f"Invalid BYDAY value: {day}")
        elif key == "WKST":
            if value.upper() not in WEEKDAYS:
                raise RRuleParseError(f"Invalid WKST value: {value}")
        elif key == "BYMONTH":
            months = _parse_int_list(key, value)
            if not months or any(month < 1 or month > 12 for month in months):
                raise RRuleParseError(f"BYMONTH values must be 1..12: {value}")
        elif key == "BYSETPOS":
            positions = _parse_int_list(key, value)
            if not positions or any(pos == 0 or abs(pos) > 366 for pos in positions):
                raise RRuleParseError(f"BYSETPOS values must be non-zero within -366..366: {value}")
        elif key == "BYMONTHDAY" and not _parse_int_list(key, value):
            raise RRuleParseError("BYMONTHDAY cannot be empty")

    if "FREQ" not in seen:
        raise RRuleParseError("RRULE missing required FREQ parameter")
    if "UNTIL" in seen and "COUNT" in seen:
        raise RRuleParseError("RRULE cannot contain both UNTIL and COUNT")

    return normalize_parts(parts)
