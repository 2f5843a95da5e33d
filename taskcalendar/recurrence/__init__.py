"""Recurrence expansion and exception reconciliation."""

from .exceptions import RRuleExpansionError, RRuleOccurrenceLimitError, RRuleParseError
from .expander import OccurrenceWindow, RecurrenceExpander
from .materializer import OccurrenceMaterializer
from .mutator import ScopeMutator
from .overrides import OverrideIndex
from .sanitizer import SanitizedRule, has_legacy_exclusions, sanitize

__all__ = [
    "OccurrenceMaterializer",
    "OccurrenceWindow",
    "OverrideIndex",
    "RRuleExpansionError",
    "RRuleOccurrenceLimitError",
    "RRuleParseError",
    "RecurrenceExpander",
    "SanitizedRule",
    "ScopeMutator",
    "has_legacy_exclusions",
    "sanitize",
]
