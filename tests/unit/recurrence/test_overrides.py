"""Unit tests for OverrideIndex."""

import pytest

from taskcalendar.recurrence.overrides import OverrideIndex
from tests.factories import make_override, utc

pytestmark = [pytest.mark.unit, pytest.mark.fast]

INSTANT = utc(2026, 1, 29, 15, 0)


class TestOverrideIndex:
    """Tests for building and querying the per-series index."""

    def test_build_when_deleted_override_then_instant_deleted(self):
        index = OverrideIndex.build([make_override("s1", INSTANT, deleted_at=utc(2026, 1, 20))])

        assert index.is_deleted(INSTANT)
        assert index.modification_for(INSTANT) is None

    def test_build_when_modification_then_lookup_by_instant(self):
        override = make_override("s1", INSTANT, notes="gate code 1234")
        index = OverrideIndex.build([override])

        assert not index.is_deleted(INSTANT)
        assert index.modification_for(INSTANT) is override

    def test_lookup_when_sub_second_difference_then_keys_match(self):
        index = OverrideIndex.build([make_override("s1", INSTANT.replace(microsecond=420000), notes="x")])
        assert index.modification_for(INSTANT.replace(microsecond=999999)) is not None

    def test_build_when_deleted_and_modified_then_deletion_wins(self):
        override = make_override("s1", INSTANT, notes="x", deleted_at=utc(2026, 1, 20))
        index = OverrideIndex.build([override])

        assert index.is_deleted(INSTANT)
        assert index.modification_for(INSTANT) is None

    def test_build_when_superseded_then_ignored(self):
        override = make_override("s1", INSTANT, deleted_at=utc(2026, 1, 20), superseded_at=utc(2026, 1, 21))
        index = OverrideIndex.build([override])

        assert not index.is_deleted(INSTANT)
        assert len(index) == 0

    def test_build_when_legacy_exclusions_then_join_deleted_set(self):
        index = OverrideIndex.build([], exclusions=[INSTANT])
        assert index.is_deleted(INSTANT)

    def test_build_when_exclusion_matches_modification_then_deletion_wins(self):
        index = OverrideIndex.build([make_override("s1", INSTANT, notes="x")], exclusions=[INSTANT])
        assert index.modification_for(INSTANT) is None

    def test_rescheduled_when_start_overridden_then_yielded(self):
        moved = make_override("s1", INSTANT, start_at=utc(2026, 1, 30, 9, 0))
        notes_only = make_override("s1", utc(2026, 2, 5, 15, 0), notes="x")
        index = OverrideIndex.build([moved, notes_only])

        assert list(index.rescheduled()) == [(INSTANT, moved)]

    def test_partition_when_mixed_series_then_grouped(self):
        a1 = make_override("a", INSTANT)
        b1 = make_override("b", INSTANT)
        a2 = make_override("a", utc(2026, 2, 5, 15, 0))

        grouped = OverrideIndex.partition([a1, b1, a2])

        assert grouped == {"a": [a1, a2], "b": [b1]}
