"""Legacy rule sanitizer.

Older task rows carry ``EXDATE`` clauses embedded in the stored rule string
(``FREQ=WEEKLY;BYDAY=TH;EXDATE=20260129``), which is not a valid RRULE value.
:func:`sanitize` strips those clauses and returns the excluded instants so the
caller can treat them as deletion exceptions. It runs once at the read
boundary; the expander never sees an EXDATE.
"""

import logging
from datetime import UTC, datetime
from typing import NamedTuple, Optional

from dateutil import parser as date_parser

from ..utils.helpers import ensure_utc, normalize_instant
from ..utils.logging import resolve_logger

_EXDATE_PREFIXES = ("exdate=", "exdate:")


class SanitizedRule(NamedTuple):
    """A rule string with its legacy exclusions pulled out."""

    rule: str
    exclusions: list[datetime]


def has_legacy_exclusions(rule_string: Optional[str]) -> bool:
    """True when the rule string embeds an EXDATE clause."""
    return bool(rule_string) and "exdate" in rule_string.lower()  # type: ignore[union-attr]


def _parse_exclusion(value: str, anchor: datetime) -> datetime:
    """Parse one EXDATE value.

    Date-only values take the anchor's UTC time of day: the clause means "the
    same time, different calendar date".
    """
    if len(value) == 8 and value.isdigit():
        day = datetime.strptime(value, "%Y%m%d")
        return datetime(
            day.year,
            day.month,
            day.day,
            anchor.hour,
            anchor.minute,
            anchor.second,
            anchor.microsecond,
            tzinfo=UTC,
        )

    if len(value) >= 15 and value[8] == "T":
        return datetime.strptime(value[:15], "%Y%m%dT%H%M%S").replace(tzinfo=UTC)

    return ensure_utc(date_parser.isoparse(value))


def sanitize(
    rule_string: str, anchor: datetime, logger: Optional[logging.Logger] = None
) -> SanitizedRule:
    """Strip embedded EXDATE clauses from a stored rule string.

    Args:
        rule_string: Stored rule value, possibly containing ``EXDATE=`` parts
        anchor: Series anchor instant
        logger: Optional logger (defaults to this module's logger)

    Returns:
        SanitizedRule with the clean rule and the excluded instants, each
        normalized to whole seconds. Rules without EXDATE come back unchanged.
    """
    log = resolve_logger(logger, __name__)

    if not has_legacy_exclusions(rule_string):
        return SanitizedRule(rule_string, [])

    anchor_utc = ensure_utc(anchor)
    rule_parts: list[str] = []
    exclusions: list[datetime] = []

    for part in rule_string.split(";"):
        if not part.strip().lower().startswith(_EXDATE_PREFIXES):
            rule_parts.append(part)
            continue

        # value follows "EXDATE=" or "EXDATE:"
        for raw_value in part.strip()[7:].split(","):
            value = raw_value.strip()
            if not value:
                continue
            try:
                exclusions.append(normalize_instant(_parse_exclusion(value, anchor_utc)))
            except (ValueError, OverflowError) as e:  # noqa: PERF203
                log.warning("Invalid EXDATE value %r in rule %r, skipping: %s", value, rule_string, e)

    clean_rule = ";".join(part for part in rule_parts if part.strip())
    log.debug(
        "Sanitized legacy rule %r -> %r with %d exclusion(s)",
        rule_string,
        clean_rule,
        len(exclusions),
    )
    return SanitizedRule(clean_rule, exclusions)
