"""Unit tests for RRULE value parsing and validation helpers."""

import pytest

from taskcalendar.recurrence.exceptions import RRuleParseError
from taskcalendar.recurrence.rules import (
    get_part,
    join_rule,
    parse_until,
    split_rule,
    strip_parts,
    validate_parts,
    with_until,
)
from tests.factories import utc

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestSplitRule:
    """Tests for splitting rule strings into parts."""

    def test_split_rule_when_prefixed_then_prefix_ignored(self):
        assert split_rule("RRULE:FREQ=WEEKLY;BYDAY=TH") == [("FREQ", "WEEKLY"), ("BYDAY", "TH")]

    def test_split_rule_when_trailing_separator_then_empty_part_skipped(self):
        assert split_rule("FREQ=MONTHLY;BYMONTHDAY=15;") == [("FREQ", "MONTHLY"), ("BYMONTHDAY", "15")]

    def test_split_rule_when_lowercase_keys_then_keys_uppercased(self):
        assert split_rule("freq=weekly")[0] == ("FREQ", "weekly")

    @pytest.mark.parametrize("rule", ["", "   ", ";;"])
    def test_split_rule_when_empty_then_raises(self, rule):
        with pytest.raises(RRuleParseError, match="Empty RRULE"):
            split_rule(rule)

    def test_split_rule_when_part_without_equals_then_raises(self):
        with pytest.raises(RRuleParseError, match="Invalid RRULE component"):
            split_rule("FREQ=WEEKLY;BYDAY")

    def test_join_rule_when_round_tripped_then_order_preserved(self):
        rule = "FREQ=MONTHLY;INTERVAL=2;BYDAY=SA;BYSETPOS=2"
        assert join_rule(split_rule(rule)) == rule


class TestRuleRewrites:
    """Tests for UNTIL injection and part stripping."""

    def test_with_until_when_unbounded_then_until_appended(self):
        assert (
            with_until("FREQ=WEEKLY;BYDAY=TH", utc(2026, 2, 12, 14, 59, 59))
            == "FREQ=WEEKLY;BYDAY=TH;UNTIL=20260212T145959Z"
        )

    def test_with_until_when_existing_until_then_replaced(self):
        rule = "FREQ=WEEKLY;UNTIL=20261231T000000Z;BYDAY=TH"
        assert with_until(rule, utc(2026, 3, 1)) == "FREQ=WEEKLY;BYDAY=TH;UNTIL=20260301T000000Z"

    def test_with_until_when_count_present_then_count_stripped(self):
        result = with_until("FREQ=WEEKLY;COUNT=10", utc(2026, 3, 1))
        assert "COUNT" not in result
        assert result.endswith("UNTIL=20260301T000000Z")

    def test_strip_parts_when_key_listed_then_removed(self):
        assert strip_parts("FREQ=WEEKLY;WKST=MO;BYDAY=TH", ("WKST",)) == "FREQ=WEEKLY;BYDAY=TH"

    def test_get_part_when_missing_then_none(self):
        assert get_part(split_rule("FREQ=WEEKLY"), "UNTIL") is None


class TestParseUntil:
    """Tests for UNTIL value interpretation."""

    def test_parse_until_when_zulu_then_utc(self):
        assert parse_until("20260301T150000Z") == utc(2026, 3, 1, 15, 0)

    def test_parse_until_when_floating_then_read_as_utc(self):
        assert parse_until("20260301T150000") == utc(2026, 3, 1, 15, 0)

    def test_parse_until_when_date_only_then_end_of_day(self):
        assert parse_until("20260301") == utc(2026, 3, 1, 23, 59, 59)

    def test_parse_until_when_garbage_then_raises(self):
        with pytest.raises(ValueError, match="Invalid UNTIL"):
            parse_until("next tuesday")


class TestValidateParts:
    """Tests for the supported-subset validator."""

    @pytest.mark.parametrize(
        "rule",
        [
            "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE,FR",
            "FREQ=MONTHLY;INTERVAL=1;BYMONTHDAY=-1",
            "FREQ=MONTHLY;INTERVAL=1;BYDAY=SA;BYSETPOS=2",
            "FREQ=MONTHLY;BYDAY=-1SA",
            "FREQ=YEARLY;INTERVAL=1;BYMONTH=1;BYMONTHDAY=15",
            "FREQ=YEARLY;BYMONTH=1;BYDAY=MO;BYSETPOS=2",
            "FREQ=WEEKLY;BYDAY=TH;COUNT=5",
            "FREQ=WEEKLY;BYDAY=TH;WKST=SU",
        ],
    )
    def test_validate_parts_when_supported_pattern_then_accepted(self, rule):
        assert validate_parts(split_rule(rule))

    @pytest.mark.parametrize(
        ("rule", "message"),
        [
            ("FREQ=DAILY", "Unsupported frequency"),
            ("BYDAY=TH", "missing required FREQ"),
            ("FREQ=WEEKLY;BYHOUR=9", "Unsupported RRULE component"),
            ("FREQ=WEEKLY;FREQ=MONTHLY", "Duplicate"),
            ("FREQ=WEEKLY;INTERVAL=0", "positive integer"),
            ("FREQ=WEEKLY;INTERVAL=abc", "positive integer"),
            ("FREQ=WEEKLY;BYDAY=THU", "Invalid BYDAY"),
            ("FREQ=YEARLY;BYMONTH=13", "BYMONTH"),
            ("FREQ=MONTHLY;BYDAY=SA;BYSETPOS=0", "BYSETPOS"),
            ("FREQ=MONTHLY;BYMONTHDAY=0", "BYMONTHDAY cannot be 0"),
            ("FREQ=WEEKLY;COUNT=3;UNTIL=20260301T000000Z", "both UNTIL and COUNT"),
            ("FREQ=WEEKLY;EXDATE=20260129", "EXDATE is not allowed"),
        ],
    )
    def test_validate_parts_when_invalid_then_specific_message(self, rule, message):
        with pytest.raises(RRuleParseError, match=message):
            validate_parts(split_rule(rule))

    def test_validate_parts_when_monthday_out_of_range_then_clamped(self):
        parts = validate_parts(split_rule("FREQ=MONTHLY;BYMONTHDAY=45"))
        assert get_part(parts, "BYMONTHDAY") == "31"

    def test_validate_parts_when_negative_monthday_out_of_range_then_clamped(self):
        parts = validate_parts(split_rule("FREQ=MONTHLY;BYMONTHDAY=-40"))
        assert get_part(parts, "BYMONTHDAY") == "-31"

    def test_validate_parts_when_floating_until_then_normalized_to_zulu(self):
        parts = validate_parts(split_rule("FREQ=WEEKLY;UNTIL=20260301"))
        assert get_part(parts, "UNTIL") == "20260301T235959Z"

    def test_validate_parts_when_lowercase_values_then_uppercased(self):
        parts = validate_parts(split_rule("FREQ=weekly;BYDAY=th"))
        assert join_rule(parts) == "FREQ=WEEKLY;BYDAY=TH"
