"""
Tests for the priority-first allocator.

Tests cover:
- No overlap and containment within working hours
- Determinism
- Priority under scarcity and ordering by due date
- Daily task limit and minimum block size
- Breaks, focus-time slot choice
- Shortfall explanations and suggestions
"""

from datetime import timedelta

import pytest

from tests.fixtures import DAY, at
from timeblocker.time_truth.allocator import (
    BREAK_TITLE,
    NO_FREE_TIME_SUGGESTION,
    Allocator,
    prioritize,
    required_duration,
)
from timeblocker.time_truth.intervals import Interval, overlaps
from timeblocker.time_truth.models import (
    PRIORITY_COLORS,
    REASON_BELOW_MINIMUM,
    REASON_DAILY_LIMIT,
    REASON_NO_FREE_TIME,
    Activity,
    BlockType,
    Priority,
)
from timeblocker.time_truth.options import ScheduleOptions


@pytest.fixture
def allocator():
    return Allocator()


@pytest.fixture
def options(defaults):
    def make(**overrides):
        return ScheduleOptions.from_mapping(overrides, defaults)

    return make


def activity(id, minutes=60, priority=Priority.NORMAL, title=None, due=None):
    return Activity(
        id=id,
        title=title or f"Activity {id}",
        priority=priority,
        estimated_duration=minutes,
        due_date=due,
    )


def event(start, end, label="Meeting"):
    return Interval(at(start), at(end), label)


def spans(blocks):
    return [(f"{b.start_time:%H:%M}", f"{b.end_time:%H:%M}", b.block_type) for b in blocks]


class TestConcreteScenario:
    """09:00-12:00, urgent 90 min and normal 60 min, 15 min break."""

    def test_urgent_first_then_break_then_normal(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "12:00"}, breakDuration=15)
        a = activity(1, 90, Priority.URGENT, "A")
        b = activity(2, 60, Priority.NORMAL, "B")

        result = allocator.allocate([b, a], DAY, opts)

        assert spans(result.scheduled_blocks) == [
            ("09:00", "10:30", BlockType.TASK),
            ("10:30", "10:45", BlockType.BREAK),
            ("10:45", "11:45", BlockType.TASK),
        ]
        assert [blk.activity_id for blk in result.task_blocks] == [1, 2]
        assert result.unscheduled_activities == []
        assert result.conflicts == []
        assert result.suggestions == ["Scheduled 2 tasks within working hours 09:00-12:00"]

    def test_break_block_shape(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "12:00"})
        result = allocator.allocate([activity(1, 90, Priority.URGENT)], DAY, opts)

        brk = result.scheduled_blocks[1]
        assert brk.block_type == BlockType.BREAK
        assert brk.title == BREAK_TITLE
        assert brk.activity_id is None
        assert brk.duration == 15


class TestPlacementInvariants:
    def test_avoids_calendar_event(self, allocator, options):
        """Nothing is placed inside a 10:00-11:00 event."""
        busy = [event("10:00", "11:00")]
        acts = [activity(i, 60) for i in range(1, 6)]

        result = allocator.allocate(acts, DAY, options(), busy)

        assert len(result.task_blocks) == 5
        for block in result.scheduled_blocks:
            assert not overlaps(block.interval(), busy[0])

    def test_lands_at_next_free_start_after_event(self, allocator, options):
        """First fit would start at 10:30 inside the 10:00-11:00 event; it moves to 11:00."""
        busy = [event("09:00", "10:30", "Planning"), event("10:00", "11:00")]

        result = allocator.allocate([activity(1, 60)], DAY, options(), busy)

        assert spans(result.task_blocks) == [("11:00", "12:00", BlockType.TASK)]

    def test_earlier_gaps_too_small_are_skipped(self, allocator, options):
        busy = [event("09:30", "10:00"), event("10:45", "11:00"), event("12:30", "17:00")]
        opts = options(focusTimePreferred=False, breakDuration=0)

        result = allocator.allocate([activity(1, 30), activity(2, 60)], DAY, opts, busy)

        assert spans(result.task_blocks) == [
            ("09:00", "09:30", BlockType.TASK),
            ("11:00", "12:00", BlockType.TASK),
        ]

    def test_no_overlap_and_containment(self, allocator, options):
        busy = [event("09:30", "10:00"), event("12:00", "13:00"), event("15:45", "16:10")]
        acts = [
            activity(i, 25 + 10 * i, Priority.URGENT if i % 3 else Priority.LOW)
            for i in range(1, 9)
        ]

        result = allocator.allocate(acts, DAY, options(), busy)
        blocks = result.scheduled_blocks

        for i, a in enumerate(blocks):
            assert at("09:00") <= a.start_time < a.end_time <= at("17:00")
            for b in blocks[i + 1 :]:
                assert not overlaps(a.interval(), b.interval())
            for e in busy:
                assert not overlaps(a.interval(), e)

    def test_output_is_chronological(self, allocator, options):
        """Focus mode may fill a later interval first; output is still sorted."""
        busy = [event("12:00", "13:00")]
        result = allocator.allocate([activity(1, 60), activity(2, 60)], DAY, options(), busy)

        starts = [b.start_time for b in result.scheduled_blocks]
        assert starts == sorted(starts)
        assert result.scheduled_blocks[0].activity_id == 2
        assert result.scheduled_blocks[0].start_time == at("09:00")

    def test_deterministic(self, allocator, options):
        busy = [event("10:00", "11:00"), event("14:00", "14:30")]
        acts = [activity(i, 45, Priority.LOW if i % 2 else Priority.URGENT) for i in range(1, 7)]

        first = allocator.allocate(acts, DAY, options(), busy)
        second = allocator.allocate(acts, DAY, options(), busy)

        assert first.to_dict() == second.to_dict()

    def test_blocks_are_proposals_owned_by_user(self, allocator, options):
        result = allocator.allocate(
            [activity(1, 30, Priority.URGENT)], DAY, options(), created_by=7
        )
        block = result.task_blocks[0]
        assert block.is_scheduled is False
        assert block.status == "proposed"
        assert block.created_by == 7
        assert block.color == PRIORITY_COLORS[Priority.URGENT]

    def test_unknown_priority_treated_as_low(self, allocator, options):
        result = allocator.allocate([activity(1, 30, priority="someday")], DAY, options())
        assert result.task_blocks[0].priority == Priority.LOW


class TestPriority:
    def test_scarcity_favours_higher_priority(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "10:00"})
        low = activity(1, 60, Priority.LOW)
        urgent = activity(2, 60, Priority.URGENT)

        result = allocator.allocate([low, urgent], DAY, opts)

        assert [b.activity_id for b in result.task_blocks] == [2]
        assert result.reason_for(1) == REASON_NO_FREE_TIME

    def test_prioritize_orders_by_rank_then_due_date(self):
        undated = activity(1)
        late = activity(2, due=at("17:00") + timedelta(days=3))
        early = activity(3, due=at("17:00"))
        low = activity(4, priority=Priority.LOW, due=at("09:00"))
        urgent = activity(5, priority=Priority.URGENT)

        ordered = prioritize([undated, late, early, low, urgent])

        assert [a.id for a in ordered] == [5, 3, 2, 1, 4]

    def test_prioritize_keeps_input_order_for_ties(self):
        acts = [activity(i) for i in (3, 1, 2)]
        assert [a.id for a in prioritize(acts)] == [3, 1, 2]


class TestLimits:
    def test_max_tasks_cutoff(self, allocator, options):
        acts = [activity(i, 30) for i in range(1, 5)]

        result = allocator.allocate(acts, DAY, options(maxTasksPerDay=2))

        assert len(result.task_blocks) == 2
        assert [u.activity.id for u in result.unscheduled_activities] == [3, 4]
        assert {u.reason for u in result.unscheduled_activities} == {REASON_DAILY_LIMIT}
        assert (
            "Daily task limit of 2 reached; consider scheduling 2 activities for tomorrow"
            in result.suggestions
        )

    def test_existing_tasks_count_toward_limit(self, allocator, options):
        acts = [activity(i, 30) for i in range(1, 4)]

        result = allocator.allocate(acts, DAY, options(maxTasksPerDay=2), existing_task_count=1)

        assert len(result.task_blocks) == 1

    def test_short_estimate_raised_to_minimum(self, allocator, options):
        result = allocator.allocate([activity(1, 10)], DAY, options(minimumBlockSize=30))
        assert result.task_blocks[0].duration == 30

    def test_missing_estimate_uses_minimum(self, allocator, options):
        result = allocator.allocate([activity(1, None)], DAY, options(minimumBlockSize=45))
        assert result.task_blocks[0].duration == 45

    def test_negative_estimate_rejected(self, allocator, options):
        result = allocator.allocate([activity(1, -20)], DAY, options())
        assert result.task_blocks == []
        assert result.reason_for(1) == REASON_BELOW_MINIMUM

    def test_required_duration(self, options):
        opts = options(minimumBlockSize=30)
        assert required_duration(activity(1, 0), opts) == 30
        assert required_duration(activity(1, 75), opts) == 75
        assert required_duration(activity(1, -1), opts) is None


class TestBreaksAndFocus:
    def test_zero_break_packs_back_to_back(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "11:00"}, breakDuration=0)

        result = allocator.allocate([activity(1, 60), activity(2, 60)], DAY, opts)

        assert spans(result.scheduled_blocks) == [
            ("09:00", "10:00", BlockType.TASK),
            ("10:00", "11:00", BlockType.TASK),
        ]

    def test_no_break_when_task_fills_interval(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "10:00"})
        result = allocator.allocate([activity(1, 60)], DAY, opts)
        assert [b.block_type for b in result.scheduled_blocks] == [BlockType.TASK]

    def test_focus_prefers_largest_remainder(self, allocator, options):
        busy = [event("10:00", "11:00")]
        result = allocator.allocate([activity(1, 60)], DAY, options(), busy)
        assert result.task_blocks[0].start_time == at("11:00")

    def test_focus_remainder_counts_the_break(self, allocator, options):
        """70 and 75 min gaps: neither keeps time after 60 min plus a 15 min break."""
        busy = [event("10:10", "10:45")]
        opts = options(workingHours={"start": "09:00", "end": "12:00"}, breakDuration=15)

        result = allocator.allocate([activity(1, 60)], DAY, opts, busy)

        assert result.task_blocks[0].start_time == at("09:00")

    def test_first_fit_without_focus(self, allocator, options):
        busy = [event("10:00", "11:00")]
        result = allocator.allocate(
            [activity(1, 60)], DAY, options(focusTimePreferred=False), busy
        )
        assert result.task_blocks[0].start_time == at("09:00")

    def test_activities_never_split(self, allocator, options):
        """A 90 min activity does not use two 60 min gaps."""
        busy = [event("10:00", "11:00")]
        opts = options(workingHours={"start": "09:00", "end": "12:00"})

        result = allocator.allocate([activity(1, 90)], DAY, opts, busy)

        assert result.task_blocks == []
        assert result.reason_for(1) == REASON_NO_FREE_TIME


class TestExplanations:
    def test_fully_occupied_day(self, allocator, options):
        busy = [event("08:00", "18:00", "Offsite")]

        result = allocator.allocate([activity(1), activity(2)], DAY, options(), busy)

        assert result.scheduled_blocks == []
        assert [u.reason for u in result.unscheduled_activities] == [REASON_NO_FREE_TIME] * 2
        assert result.conflicts == [
            "Working hours 09:00-17:00 are fully occupied by 09:00-17:00 (Offsite)"
        ]
        assert result.suggestions == [NO_FREE_TIME_SUGGESTION]

    def test_names_busy_interval_to_shrink(self, allocator, options):
        busy = [event("10:00", "10:30", "Sync")]
        opts = options(workingHours={"start": "09:00", "end": "12:00"})

        result = allocator.allocate([activity(1, 120, title="Deep work")], DAY, opts, busy)

        assert result.conflicts == [
            '"Deep work" (120 min) does not fit: busy 10:00-10:30 (Sync) '
            "would need to shrink by 30 min"
        ]
        assert result.suggestions == [
            "Increase working hours (currently 09:00-12:00) or move 1 activity to another day"
        ]

    def test_exceeds_largest_free_interval(self, allocator, options):
        busy = [event("10:00", "11:00", "Long")]
        opts = options(workingHours={"start": "09:00", "end": "12:00"})

        result = allocator.allocate([activity(1, 150, title="Report")], DAY, opts, busy)

        assert result.conflicts == ['"Report" (150 min) exceeds the largest free interval (60 min)']

    def test_space_taken_by_higher_priority(self, allocator, options):
        opts = options(workingHours={"start": "09:00", "end": "10:00"})
        acts = [activity(1, 60, Priority.URGENT, "A"), activity(2, 60, Priority.NORMAL, "B")]

        result = allocator.allocate(acts, DAY, opts)

        assert result.conflicts == [
            'No free interval left for "B" (60 min) after placing higher-priority activities'
        ]
        assert result.suggestions == [
            "Scheduled 1 task within working hours 09:00-10:00",
            "Reduce break duration (currently 15 min) to free up time",
            "Increase working hours (currently 09:00-10:00) or move 1 activity to another day",
        ]

    def test_empty_activity_list(self, allocator, options):
        result = allocator.allocate([], DAY, options())
        assert result.scheduled_blocks == []
        assert result.unscheduled_activities == []
        assert result.suggestions == []
