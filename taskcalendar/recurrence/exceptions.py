"""Recurrence-specific exceptions."""


class RRuleExpansionError(Exception):
    """Base exception for RRULE expansion errors."""


class RRuleParseError(RRuleExpansionError):
    """Error parsing or validating an RRULE string."""


class RRuleOccurrenceLimitError(RRuleExpansionError):
    """A range would produce more occurrences of one series than the configured cap."""
