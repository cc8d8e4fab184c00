"""
Allocator - place prioritized activities into a day's free time.

Greedy, priority-first, first-fit:
1. Busy set (existing blocks + calendar events) is merged and clipped to
   working hours; free intervals are what remains.
2. Activities are ordered by priority rank, then due date (undated last),
   then input order.
3. Each activity takes its estimated duration (raised to the minimum block
   size) and lands in the earliest free interval that holds it. With focus
   time preferred, the interval left with the largest remainder after the
   task and its break wins.
4. A break follows each task unless task + break reaches the end of the
   interval. Activities are never split across intervals.

Pure and synchronous: same input, same output, no I/O. Ordering is
O(n log n) in activities, merging O(m log m) in busy intervals, and each
placement O(log m) over a segment tree of free-slot capacities.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from timeblocker.time_truth.intervals import Interval, clip, merge, subtract
from timeblocker.time_truth.models import (
    BREAK_COLOR,
    PRIORITY_COLORS,
    REASON_BELOW_MINIMUM,
    REASON_DAILY_LIMIT,
    REASON_NO_FREE_TIME,
    Activity,
    BlockType,
    Priority,
    ScheduleResult,
    TimeBlock,
    UnscheduledActivity,
    parse_timestamp,
    priority_rank,
)
from timeblocker.time_truth.options import ScheduleOptions

logger = logging.getLogger(__name__)

NO_FREE_TIME_SUGGESTION = "no free time available, consider extending working hours"

BREAK_TITLE = "Break"
BREAK_DESCRIPTION = "Scheduled break for focus and productivity"


@dataclass
class _FreeSlot:
    """Mutable remainder of a free interval during one allocation run."""

    start: datetime
    end: datetime

    def capacity(self) -> timedelta:
        return self.end - self.start


_USED_UP = timedelta(minutes=-1)


class _SlotIndex:
    """
    Free slots in chronological order over a max-capacity segment tree.

    Capacities only shrink during a run. Finding the earliest slot that
    holds a duration, or the roomiest slot, walks one root-to-leaf path.
    """

    def __init__(self, intervals: Sequence[Interval]):
        self.slots = [_FreeSlot(f.start, f.end) for f in intervals]
        size = 1
        while size < len(self.slots):
            size *= 2
        self._size = size
        self._tree = [_USED_UP] * (2 * size)
        for i, slot in enumerate(self.slots):
            self._tree[size + i] = slot.capacity()
        for node in range(size - 1, 0, -1):
            self._tree[node] = max(self._tree[2 * node], self._tree[2 * node + 1])

    @property
    def largest(self) -> timedelta:
        return self._tree[1]

    def first_fit(self, needed: timedelta) -> int | None:
        """Index of the earliest slot with capacity >= needed."""
        if self._tree[1] < needed:
            return None
        node = 1
        while node < self._size:
            node = 2 * node if self._tree[2 * node] >= needed else 2 * node + 1
        return node - self._size

    def refresh(self, i: int) -> None:
        slot = self.slots[i]
        node = self._size + i
        self._tree[node] = slot.capacity() if slot.end > slot.start else _USED_UP
        node //= 2
        while node:
            self._tree[node] = max(self._tree[2 * node], self._tree[2 * node + 1])
            node //= 2


def prioritize(activities: Sequence[Activity]) -> list[Activity]:
    """
    Deterministic scheduling order.

    urgent < normal < low; within a tier earlier due dates first and undated
    activities last; input order breaks remaining ties.
    """

    def sort_key(item: tuple[int, Activity]):
        index, activity = item
        due = parse_timestamp(activity.due_date)
        return (priority_rank(activity.priority), due is None, due or datetime.min, index)

    return [activity for _, activity in sorted(enumerate(activities), key=sort_key)]


def required_duration(activity: Activity, options: ScheduleOptions) -> int | None:
    """
    Minutes to reserve for an activity, or None if it cannot be scheduled.

    Missing (or zero) estimates use the minimum block size; short estimates
    are raised to it. Negative estimates are rejected.
    """
    estimate = activity.estimated_duration
    if not estimate:
        return options.minimum_block_size
    if estimate < 0:
        return None
    return max(estimate, options.minimum_block_size)


def _normalize_priority(value) -> str:
    try:
        return str(Priority(value))
    except ValueError:
        return str(Priority.LOW)


class Allocator:
    """
    Packs activities into free time.

    Usage:
        result = Allocator().allocate(activities, date(2026, 3, 2), options, busy)
    """

    def allocate(
        self,
        activities: Sequence[Activity],
        target_date: date,
        options: ScheduleOptions,
        busy: Iterable[Interval] = (),
        created_by: int = 0,
        existing_task_count: int = 0,
    ) -> ScheduleResult:
        """
        Compute a placement for target_date.

        Args:
            activities: schedulable activities (already filtered)
            target_date: day to schedule
            options: validated ScheduleOptions
            busy: occupied intervals (time blocks and calendar events)
            created_by: owner stamped onto produced blocks
            existing_task_count: task blocks already committed that day;
                they count toward max_tasks_per_day

        Returns:
            ScheduleResult with proposed (is_scheduled=False) blocks in
            chronological order.
        """
        window = options.working_hours.window(target_date)
        busy_in_window = [c for c in (clip(b, window) for b in merge(busy)) if c is not None]
        initial_free = subtract(window, busy_in_window)

        result = ScheduleResult(date=target_date)
        ordered = prioritize(activities)

        if not initial_free:
            for activity in ordered:
                result.unscheduled_activities.append(
                    UnscheduledActivity(activity, REASON_NO_FREE_TIME)
                )
            result.conflicts = [
                f"Working hours {options.working_hours.describe()} are fully occupied by "
                f"{b.describe()}"
                for b in busy_in_window
            ]
            result.suggestions = [NO_FREE_TIME_SUGGESTION]
            return result

        slots = _SlotIndex(initial_free)
        blocks: list[TimeBlock] = []
        task_count = existing_task_count
        placed = 0
        out_of_time: list[Activity] = []
        over_limit: list[Activity] = []

        for activity in ordered:
            if task_count >= options.max_tasks_per_day:
                result.unscheduled_activities.append(
                    UnscheduledActivity(activity, REASON_DAILY_LIMIT)
                )
                over_limit.append(activity)
                continue

            duration = required_duration(activity, options)
            if duration is None:
                result.unscheduled_activities.append(
                    UnscheduledActivity(activity, REASON_BELOW_MINIMUM)
                )
                continue

            index = self._pick_slot(slots, duration, options)
            if index is None:
                result.unscheduled_activities.append(
                    UnscheduledActivity(activity, REASON_NO_FREE_TIME)
                )
                result.conflicts.append(
                    self._explain_shortfall(activity, duration, busy_in_window, initial_free)
                )
                out_of_time.append(activity)
                continue

            blocks.extend(self._place(activity, duration, slots.slots[index], options, created_by))
            slots.refresh(index)
            task_count += 1
            placed += 1

        result.scheduled_blocks = sorted(blocks, key=lambda b: (b.start_time, b.end_time))
        result.suggestions = self._suggestions(placed, out_of_time, over_limit, options)

        logger.debug(
            "Allocated %d of %d activities on %s (%d free intervals)",
            placed,
            len(ordered),
            target_date,
            len(initial_free),
        )
        return result

    # ==================== Placement ====================

    @staticmethod
    def _pick_slot(slots: _SlotIndex, duration: int, options: ScheduleOptions) -> int | None:
        needed = timedelta(minutes=duration)
        first = slots.first_fit(needed)
        if first is None or not options.focus_time_preferred:
            return first
        # Largest remainder after the task and its break, earliest on ties.
        # When no slot keeps anything every candidate ties and first fit wins.
        if slots.largest - needed - timedelta(minutes=options.break_duration) <= timedelta(0):
            return first
        return slots.first_fit(slots.largest)

    @staticmethod
    def _place(
        activity: Activity,
        duration: int,
        slot: _FreeSlot,
        options: ScheduleOptions,
        created_by: int,
    ) -> list[TimeBlock]:
        priority = _normalize_priority(activity.priority)
        task_end = slot.start + timedelta(minutes=duration)
        placed = [
            TimeBlock(
                activity_id=activity.id,
                title=activity.title,
                description=activity.description,
                start_time=slot.start,
                end_time=task_end,
                block_type=BlockType.TASK,
                priority=priority,
                color=PRIORITY_COLORS[Priority(priority)],
                created_by=created_by,
            )
        ]

        next_start = task_end + timedelta(minutes=options.break_duration)
        if next_start >= slot.end:
            # Span fully consumed: no room for a break or another task
            slot.start = slot.end
            return placed

        if options.break_duration > 0:
            placed.append(
                TimeBlock(
                    activity_id=None,
                    title=BREAK_TITLE,
                    description=BREAK_DESCRIPTION,
                    start_time=task_end,
                    end_time=next_start,
                    block_type=BlockType.BREAK,
                    priority=str(Priority.NORMAL),
                    color=BREAK_COLOR,
                    created_by=created_by,
                )
            )
        slot.start = next_start
        return placed

    # ==================== Explanations ====================

    @staticmethod
    def _explain_shortfall(
        activity: Activity,
        duration: int,
        busy: list[Interval],
        initial_free: list[Interval],
    ) -> str:
        """
        Describe why an activity found no room.

        Names the smallest busy interval that, shrunk on one side, would open
        a slot long enough; otherwise reports the largest free interval.
        """
        largest_free = max(f.duration_min for f in initial_free)
        if largest_free >= duration:
            return (
                f'No free interval left for "{activity.title}" ({duration} min) '
                f"after placing higher-priority activities"
            )

        free_ending_at = {f.end: f.duration_min for f in initial_free}
        free_starting_at = {f.start: f.duration_min for f in initial_free}

        best: tuple[tuple[int, datetime], Interval, int] | None = None
        for interval in busy:
            neighbour = max(
                free_ending_at.get(interval.start, 0), free_starting_at.get(interval.end, 0)
            )
            shrink = duration - neighbour
            if shrink > interval.duration_min:
                continue
            key = (interval.duration_min, interval.start)
            if best is None or key < best[0]:
                best = (key, interval, shrink)

        if best is not None:
            _, interval, shrink = best
            return (
                f'"{activity.title}" ({duration} min) does not fit: busy {interval.describe()} '
                f"would need to shrink by {shrink} min"
            )
        return (
            f'"{activity.title}" ({duration} min) exceeds the largest free interval '
            f"({largest_free} min)"
        )

    @staticmethod
    def _suggestions(
        placed: int,
        out_of_time: list[Activity],
        over_limit: list[Activity],
        options: ScheduleOptions,
    ) -> list[str]:
        suggestions = []
        hours = options.working_hours.describe()

        if placed:
            noun = "task" if placed == 1 else "tasks"
            suggestions.append(f"Scheduled {placed} {noun} within working hours {hours}")

        if out_of_time:
            count = len(out_of_time)
            noun = "activity" if count == 1 else "activities"
            if options.break_duration > 0 and placed:
                suggestions.append(
                    f"Reduce break duration (currently {options.break_duration} min) "
                    f"to free up time"
                )
            suggestions.append(
                f"Increase working hours (currently {hours}) or move {count} {noun} "
                f"to another day"
            )

        if over_limit:
            count = len(over_limit)
            noun = "activity" if count == 1 else "activities"
            suggestions.append(
                f"Daily task limit of {options.max_tasks_per_day} reached; consider scheduling "
                f"{count} {noun} for tomorrow"
            )

        return suggestions
