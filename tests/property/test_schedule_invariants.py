"""
Property-based tests for allocator invariants using Hypothesis.

Random activity lists, busy intervals and options are fed through the
allocator and the output is checked against properties that must hold for
every input.
"""

from datetime import date, datetime, time, timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from timeblocker.time_truth.allocator import Allocator, prioritize, required_duration
from timeblocker.time_truth.intervals import Interval, merge, overlaps, subtract
from timeblocker.time_truth.models import REASON_NO_FREE_TIME, Activity, BlockType
from timeblocker.time_truth.options import ScheduleOptions, WorkingHours

DAY = date(2026, 3, 2)
MIDNIGHT = datetime.combine(DAY, time())

# ============================================================================
# Strategies
# ============================================================================


@st.composite
def activities(draw):
    count = draw(st.integers(min_value=0, max_value=12))
    return [
        Activity(
            id=i + 1,
            title=f"Activity {i + 1}",
            priority=draw(st.sampled_from(["urgent", "normal", "low", "", None])),
            estimated_duration=draw(st.one_of(st.none(), st.integers(-30, 300))),
            due_date=draw(
                st.one_of(
                    st.none(),
                    st.builds(lambda d: MIDNIGHT + timedelta(days=d), st.integers(0, 10)),
                )
            ),
        )
        for i in range(count)
    ]


@st.composite
def busy_intervals(draw):
    result = []
    for _ in range(draw(st.integers(min_value=0, max_value=6))):
        start = draw(st.integers(min_value=6 * 60, max_value=20 * 60))
        length = draw(st.integers(min_value=1, max_value=180))
        result.append(
            Interval(
                MIDNIGHT + timedelta(minutes=start),
                MIDNIGHT + timedelta(minutes=start + length),
            )
        )
    return result


@st.composite
def schedule_options(draw):
    start = draw(st.integers(min_value=6 * 60, max_value=12 * 60))
    end = draw(st.integers(min_value=start + 30, max_value=20 * 60))
    return ScheduleOptions(
        working_hours=WorkingHours(
            time(start // 60, start % 60), time(end // 60, end % 60)
        ),
        break_duration=draw(st.integers(min_value=0, max_value=30)),
        minimum_block_size=draw(st.integers(min_value=5, max_value=60)),
        focus_time_preferred=draw(st.booleans()),
        max_tasks_per_day=draw(st.integers(min_value=1, max_value=10)),
    )


def allocate(acts, busy, options, existing=0):
    return Allocator().allocate(acts, DAY, options, busy=busy, existing_task_count=existing)


# ============================================================================
# Placement Invariants
# ============================================================================


@settings(max_examples=200)
@given(activities(), busy_intervals(), schedule_options())
def test_blocks_never_overlap(acts, busy, options):
    """No two produced blocks share any time."""
    blocks = allocate(acts, busy, options).scheduled_blocks
    for i, a in enumerate(blocks):
        for b in blocks[i + 1 :]:
            assert not overlaps(a.interval(), b.interval())


@settings(max_examples=200)
@given(activities(), busy_intervals(), schedule_options())
def test_blocks_within_working_hours(acts, busy, options):
    window = options.working_hours.window(DAY)
    for block in allocate(acts, busy, options).scheduled_blocks:
        assert window.start <= block.start_time < block.end_time <= window.end


@settings(max_examples=200)
@given(activities(), busy_intervals(), schedule_options())
def test_blocks_avoid_busy_time(acts, busy, options):
    """Every block lies inside the free time left by the busy intervals."""
    free = subtract(options.working_hours.window(DAY), merge(busy))
    for block in allocate(acts, busy, options).scheduled_blocks:
        assert any(f.start <= block.start_time and block.end_time <= f.end for f in free)


@given(activities(), busy_intervals(), schedule_options())
def test_output_is_chronological(acts, busy, options):
    blocks = allocate(acts, busy, options).scheduled_blocks
    starts = [b.start_time for b in blocks]
    assert starts == sorted(starts)


@given(activities(), busy_intervals(), schedule_options())
def test_allocation_is_deterministic(acts, busy, options):
    def shape(result):
        blocks = result.scheduled_blocks
        return (
            [(b.activity_id, b.block_type, b.start_time, b.end_time) for b in blocks],
            [(u.activity.id, u.reason) for u in result.unscheduled_activities],
            result.conflicts,
            result.suggestions,
        )

    first = allocate(acts, busy, options)
    second = allocate(acts, list(reversed(busy)), options)
    assert shape(first) == shape(second)


# ============================================================================
# Accounting Invariants
# ============================================================================


@given(activities(), busy_intervals(), schedule_options())
def test_every_activity_accounted_for_once(acts, busy, options):
    result = allocate(acts, busy, options)
    scheduled = [b.activity_id for b in result.task_blocks]
    unscheduled = [u.activity.id for u in result.unscheduled_activities]

    assert len(scheduled) == len(set(scheduled))
    assert sorted(scheduled + unscheduled) == sorted(a.id for a in acts)


@given(activities(), busy_intervals(), schedule_options())
def test_task_blocks_use_required_duration(acts, busy, options):
    by_id = {a.id: a for a in acts}
    for block in allocate(acts, busy, options).task_blocks:
        assert block.duration == required_duration(by_id[block.activity_id], options)


@given(activities(), busy_intervals(), schedule_options(), st.integers(min_value=0, max_value=12))
def test_daily_limit_respected(acts, busy, options, existing):
    result = allocate(acts, busy, options, existing=existing)
    assert len(result.task_blocks) <= max(0, options.max_tasks_per_day - existing)


@given(activities(), busy_intervals(), schedule_options())
def test_breaks_follow_tasks(acts, busy, options):
    """A break always starts where a task block ends."""
    blocks = allocate(acts, busy, options).scheduled_blocks
    task_ends = {b.end_time for b in blocks if b.block_type == BlockType.TASK}
    for block in blocks:
        if block.block_type == BlockType.BREAK:
            assert block.start_time in task_ends
            assert block.duration == options.break_duration


@settings(max_examples=200)
@given(activities(), busy_intervals(), schedule_options())
def test_higher_priority_never_displaced_by_larger_task(acts, busy, options):
    """
    If an activity is left out for lack of time, every activity ranked
    after it that did get placed is strictly shorter.
    """
    result = allocate(acts, busy, options)
    placed = {b.activity_id: b.duration for b in result.task_blocks}
    order = [a.id for a in prioritize(acts)]
    by_id = {a.id: a for a in acts}

    for item in result.unscheduled_activities:
        if item.reason != REASON_NO_FREE_TIME:
            continue
        needed = required_duration(item.activity, options)
        if needed is None:
            continue
        rank = order.index(item.activity.id)
        for later_id in order[rank + 1 :]:
            if later_id in placed:
                assert placed[later_id] < needed, by_id[later_id]
