"""
Interval Model - half-open time ranges and busy/free arithmetic.

Every interval is [start, end). Zero-length intervals are allowed as values
but never overlap anything, including themselves, and are dropped from
merged/free results.

Pure functions, no side effects. Everything else in time_truth composes
over these.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime
    label: str = field(default="", compare=False)

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end} precedes start {self.start}")

    @property
    def duration_min(self) -> int:
        """Length in whole minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def describe(self) -> str:
        """Human-readable `HH:MM-HH:MM (label)` form used in conflict messages."""
        span = f"{self.start:%H:%M}-{self.end:%H:%M}"
        return f"{span} ({self.label})" if self.label else span


def overlaps(a: Interval, b: Interval) -> bool:
    """True iff a and b share time. Zero-length intervals never overlap."""
    if a.is_empty or b.is_empty:
        return False
    return a.start < b.end and b.start < a.end


def clip(interval: Interval, window: Interval) -> Interval | None:
    """Intersect interval with window. None when nothing non-empty remains."""
    start = max(interval.start, window.start)
    end = min(interval.end, window.end)
    if start >= end:
        return None
    return replace(interval, start=start, end=end)


def _join_labels(a: str, b: str) -> str:
    if not a:
        return b
    if not b or b in a.split(", "):
        return a
    return f"{a}, {b}"


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """
    Sort and coalesce intervals.

    Overlapping and touching intervals merge into one; labels are joined.
    Empty intervals are dropped.
    """
    ordered = sorted((i for i in intervals if not i.is_empty), key=lambda i: (i.start, i.end))
    merged: list[Interval] = []

    for interval in ordered:
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(
                start=last.start,
                end=max(last.end, interval.end),
                label=_join_labels(last.label, interval.label),
            )
        else:
            merged.append(interval)

    return merged


def subtract(window: Interval, busy: Iterable[Interval]) -> list[Interval]:
    """
    Free sub-intervals of window after removing every busy interval.

    Busy intervals are merged and sorted first; parts outside the window are
    ignored. Result is chronological and contains no empty intervals.
    """
    free: list[Interval] = []
    cursor = window.start

    for block in merge(busy):
        if block.end <= window.start:
            continue
        if block.start >= window.end:
            break
        if cursor < block.start:
            free.append(Interval(cursor, block.start))
        cursor = max(cursor, block.end)
        if cursor >= window.end:
            break

    if cursor < window.end:
        free.append(Interval(cursor, window.end))

    return free
