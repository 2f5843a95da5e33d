"""Index of per-occurrence overrides keyed by normalized original instant."""

from collections import defaultdict
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Optional

from ..store.models import TaskOverride
from ..utils.helpers import normalize_instant


class OverrideIndex:
    """Deletion set and modification map for one series.

    Keys are original instants truncated to whole seconds in UTC, so a stored
    ``original_start`` and a freshly generated instant compare equal even when
    they differ at sub-second resolution. Superseded rows never enter the
    index. A deletion marker is terminal: :meth:`is_deleted` wins over any
    modification recorded for the same instant.
    """

    def __init__(self) -> None:
        self.deleted: set[datetime] = set()
        self.modifications: dict[datetime, TaskOverride] = {}

    @classmethod
    def build(
        cls, overrides: Iterable[TaskOverride], exclusions: Iterable[datetime] = ()
    ) -> "OverrideIndex":
        """Build an index from override rows and legacy exclusion instants."""
        index = cls()
        for override in overrides:
            index.add(override)
        for instant in exclusions:
            index.deleted.add(normalize_instant(instant))
        return index

    @staticmethod
    def partition(overrides: Iterable[TaskOverride]) -> dict[str, list[TaskOverride]]:
        """Group a batch of overrides by owning series."""
        grouped: dict[str, list[TaskOverride]] = defaultdict(list)
        for override in overrides:
            grouped[override.series_id].append(override)
        return dict(grouped)

    def add(self, override: TaskOverride) -> None:
        if override.is_superseded:
            return

        key = normalize_instant(override.original_start)
        if override.is_deleted:
            self.deleted.add(key)
            self.modifications.pop(key, None)
        elif key not in self.deleted:
            self.modifications[key] = override

    def is_deleted(self, instant: datetime) -> bool:
        return normalize_instant(instant) in self.deleted

    def modification_for(self, instant: datetime) -> Optional[TaskOverride]:
        """Live modification for an instant, or None if absent or deleted."""
        key = normalize_instant(instant)
        if key in self.deleted:
            return None
        return self.modifications.get(key)

    def rescheduled(self) -> Iterator[tuple[datetime, TaskOverride]]:
        """Live modifications that carry their own start instant."""
        for key, override in sorted(self.modifications.items()):
            if key not in self.deleted and override.start_at is not None:
                yield key, override

    def __len__(self) -> int:
        return len(self.deleted) + len(self.modifications)
