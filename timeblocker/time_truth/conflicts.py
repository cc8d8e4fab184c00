"""
Conflict Detector - which busy intervals overlap a candidate.

A day can carry dozens of calendar events, so BusySet keeps intervals sorted
by start with a running maximum of end times. A query bisects on the
candidate's end and walks backwards only while some earlier interval can
still reach past the candidate's start.

Never raises for well-formed intervals; an empty result is the success case.
"""

import bisect
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from timeblocker.time_truth.intervals import Interval, overlaps


class BusySet:
    """Immutable, query-optimised collection of busy intervals."""

    def __init__(self, intervals: Iterable[Interval]):
        self._items: list[Interval] = sorted(
            (i for i in intervals if not i.is_empty), key=lambda i: (i.start, i.end)
        )
        self._starts: list[datetime] = [i.start for i in self._items]
        self._reach: list[datetime] = []
        for item in self._items:
            self._reach.append(max(self._reach[-1], item.end) if self._reach else item.end)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def find_conflicts(self, candidate: Interval) -> list[Interval]:
        """Every busy interval overlapping candidate, ordered by start."""
        if candidate.is_empty:
            return []

        # Only intervals starting before candidate.end can overlap
        idx = bisect.bisect_left(self._starts, candidate.end)
        hits: list[Interval] = []

        i = idx - 1
        while i >= 0 and self._reach[i] > candidate.start:
            if self._items[i].end > candidate.start:
                hits.append(self._items[i])
            i -= 1

        hits.reverse()
        return hits

    def is_free(self, candidate: Interval) -> bool:
        return not self.find_conflicts(candidate)


def find_conflicts(candidate: Interval, busy: Iterable[Interval]) -> list[Interval]:
    """Return every busy interval that overlaps the candidate (empty = no conflict)."""
    if isinstance(busy, BusySet):
        return busy.find_conflicts(candidate)
    return BusySet(busy).find_conflicts(candidate)


# ============================================================
# Manual block conflict check
# ============================================================


@dataclass
class BlockConflict:
    """A proposed manual block and the calendar events it collides with."""

    title: str
    start_time: datetime
    end_time: datetime
    conflicting_events: list[Interval] = field(default_factory=list)

    @property
    def overlap_minutes(self) -> int:
        total = 0
        for event in self.conflicting_events:
            start = max(self.start_time, event.start)
            end = min(self.end_time, event.end)
            total += int((end - start).total_seconds() // 60)
        return total

    def describe(self) -> str:
        events = "; ".join(e.describe() for e in self.conflicting_events)
        return f'"{self.title}" {self.start_time:%H:%M}-{self.end_time:%H:%M} overlaps {events}'


def check_block_conflicts(blocks: Sequence, events: Iterable[Interval]) -> list[BlockConflict]:
    """
    Warn-before-save check for manually created blocks.

    Args:
        blocks: objects with start_time, end_time and title
        events: busy intervals of existing calendar events

    Returns:
        One BlockConflict per block that overlaps at least one event, in
        input order. Blocks without conflicts are omitted.
    """
    busy = BusySet(events)
    conflicts = []

    for block in blocks:
        candidate = Interval(block.start_time, block.end_time, block.title)
        hits = busy.find_conflicts(candidate)
        if hits:
            conflicts.append(
                BlockConflict(
                    title=block.title,
                    start_time=block.start_time,
                    end_time=block.end_time,
                    conflicting_events=hits,
                )
            )

    return conflicts


def any_overlap(intervals: Sequence[Interval]) -> tuple[Interval, Interval] | None:
    """First overlapping pair in a collection, or None. Used as a commit guard."""
    ordered = sorted((i for i in intervals if not i.is_empty), key=lambda i: (i.start, i.end))
    for a, b in zip(ordered, ordered[1:]):
        if overlaps(a, b):
            return a, b
    return None
