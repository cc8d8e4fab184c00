"""
Scheduler - preview and confirm a day's time blocks.

The scheduling session is a two-step saga:
1. preview: read-only. Loads the activities, the day's blocks and calendar
   events, runs the Allocator, returns proposed blocks.
2. confirm: under the per-(user, date) lock and one SQLite write
   transaction, re-reads the busy state, recomputes from scratch, persists
   the blocks as committed. Calendar sync is queued only after commit.

Preview and confirm run the same computation, so confirming against an
unchanged busy set yields exactly the previewed blocks.
"""

import hashlib
import logging
import sqlite3
from collections.abc import Iterable, Mapping
from datetime import date, datetime

from timeblocker.state_store import get_store
from timeblocker.time_truth.allocator import Allocator
from timeblocker.time_truth.block_manager import BlockManager
from timeblocker.time_truth.calendar_sync import CalendarSync
from timeblocker.time_truth.conflicts import (
    BlockConflict,
    BusySet,
    any_overlap,
    check_block_conflicts,
)
from timeblocker.time_truth.intervals import Interval, merge
from timeblocker.time_truth.locks import KeyedLock
from timeblocker.time_truth.models import (
    REASON_ALREADY_BLOCKED,
    REASON_COMPLETED,
    BlockType,
    ScheduleResult,
    TimeBlock,
    UnscheduledActivity,
)
from timeblocker.time_truth.options import ScheduleOptions, ScheduleValidationError

logger = logging.getLogger(__name__)

# Shared by every Scheduler in the process
_commit_locks = KeyedLock()


class ScheduleCommitError(RuntimeError):
    """Computed placements collide with stored blocks at commit time."""


def busy_fingerprint(intervals: Iterable[Interval]) -> str:
    """Stable digest of a busy set. Equal busy time gives an equal digest."""
    digest = hashlib.sha256()
    for interval in merge(intervals):
        digest.update(f"{interval.start.isoformat()}/{interval.end.isoformat()};".encode())
    return digest.hexdigest()[:16]


def parse_target_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ScheduleValidationError(
            "date", f"invalid date {value!r}, expected YYYY-MM-DD"
        ) from None


def parse_activity_ids(value) -> list[int]:
    """Validate requested ids. Duplicates are dropped, order kept."""
    if not value:
        raise ScheduleValidationError("activityIds", "at least one activity id is required")
    ids = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ScheduleValidationError("activityIds", f"invalid activity id {item!r}")
        ids.append(item)
    return list(dict.fromkeys(ids))


class Scheduler:
    """
    Schedule session over the store.

    Usage:
        scheduler = Scheduler()
        proposal = scheduler.preview(7, [1, 2, 3], "2026-03-02", {"breakDuration": 10})
        committed = scheduler.confirm(7, [1, 2, 3], "2026-03-02", {"breakDuration": 10})
    """

    def __init__(
        self,
        store=None,
        allocator: Allocator | None = None,
        locks: KeyedLock | None = None,
        sync: CalendarSync | None = None,
        defaults: Mapping | None = None,
        auto_sync: bool = True,
    ):
        self.store = store or get_store()
        self.block_manager = BlockManager(self.store)
        self.calendar_sync = sync or CalendarSync(self.store)
        self.allocator = allocator or Allocator()
        self.locks = locks or _commit_locks
        self.defaults = defaults
        self.auto_sync = auto_sync

    # ==================== Session ====================

    def preview(
        self, user_id: int, activity_ids, target_date, options=None
    ) -> ScheduleResult:
        """
        Compute a proposed schedule. Writes nothing.

        Raises:
            ScheduleValidationError: malformed options, date or activity list
        """
        ids, day, opts = self._validate(activity_ids, target_date, options)
        result = self._compute(user_id, ids, day, opts)
        logger.info(
            "Preview for user %s on %s: %d task block(s), %d unscheduled",
            user_id,
            day,
            len(result.task_blocks),
            len(result.unscheduled_activities),
        )
        return result

    def confirm(
        self,
        user_id: int,
        activity_ids,
        target_date,
        options=None,
        preview_fingerprint: str | None = None,
    ) -> ScheduleResult:
        """
        Recompute and commit a schedule atomically.

        Args:
            preview_fingerprint: busy_fingerprint of the preview the user
                accepted; a mismatch flags the result as recomputed

        Returns:
            ScheduleResult with committed=True and persisted blocks (ids set).
            Placing nothing is still a successful commit.
        """
        ids, day, opts = self._validate(activity_ids, target_date, options)

        with self.locks.hold((user_id, day.isoformat())):
            with self.store.transaction() as conn:
                result = self._compute(user_id, ids, day, opts, conn=conn)
                if preview_fingerprint and preview_fingerprint != result.busy_fingerprint:
                    result.recomputed = True
                    logger.info(
                        "Busy time of user %s on %s changed since preview, schedule recomputed",
                        user_id,
                        day,
                    )
                for block in result.scheduled_blocks:
                    block.is_scheduled = True
                self._guard_commit(user_id, day, result.scheduled_blocks, conn)
                self.block_manager.insert_blocks(result.scheduled_blocks, conn)
            result.committed = True

        logger.info(
            "Committed %d block(s) for user %s on %s",
            len(result.scheduled_blocks),
            user_id,
            day,
        )

        task_ids = [b.id for b in result.task_blocks]
        if task_ids and self.auto_sync:
            result.sync_job_id = self._queue_sync(task_ids)
        return result

    # ==================== Reads and manual blocks ====================

    def day_blocks(self, user_id: int, target_date) -> list[TimeBlock]:
        return self.block_manager.get_blocks_for_day(user_id, parse_target_date(target_date))

    def check_conflicts(self, user_id: int, blocks: list) -> list[BlockConflict]:
        """
        Which of the given (unsaved) blocks overlap the user's calendar events.

        Args:
            blocks: objects with title, start_time and end_time
        """
        events: list[Interval] = []
        for day in sorted({b.start_time.date() for b in blocks}):
            events.extend(
                e.interval() for e in self.calendar_sync.get_events_for_day(user_id, day)
            )

        return check_block_conflicts(blocks, events)

    def delete_block(self, user_id: int, block_id: int) -> bool:
        """Delete one of the user's blocks and queue removal of its external event."""
        deleted = self.block_manager.delete_block(block_id, user_id=user_id)
        if deleted and self.auto_sync:
            self.calendar_sync.enqueue_removal(block_id)
        return deleted

    # ==================== Internals ====================

    def _validate(self, activity_ids, target_date, options):
        ids = parse_activity_ids(activity_ids)
        day = parse_target_date(target_date)
        opts = ScheduleOptions.coerce(options, self.defaults)
        return ids, day, opts

    def _compute(
        self,
        user_id: int,
        ids: list[int],
        day: date,
        options: ScheduleOptions,
        conn: sqlite3.Connection | None = None,
    ) -> ScheduleResult:
        activities = self.block_manager.load_activities(user_id, ids, conn=conn)
        blocked = self.block_manager.blocked_activity_ids(list(activities), conn=conn)
        existing = self.block_manager.get_blocks_for_day(user_id, day, conn=conn)
        events = self.calendar_sync.get_events_for_day(user_id, day, conn=conn)

        busy = BlockManager.busy_intervals(existing) + [
            e.interval() for e in events if e.end_time > e.start_time
        ]
        existing_tasks = sum(
            1 for b in existing if b.block_type == BlockType.TASK and b.date == day
        )

        schedulable = []
        excluded: list[UnscheduledActivity] = []
        unknown: list[int] = []
        for activity_id in ids:
            activity = activities.get(activity_id)
            if activity is None:
                unknown.append(activity_id)
            elif activity.is_completed:
                excluded.append(UnscheduledActivity(activity, REASON_COMPLETED))
            elif activity_id in blocked:
                excluded.append(UnscheduledActivity(activity, REASON_ALREADY_BLOCKED))
            else:
                schedulable.append(activity)

        result = self.allocator.allocate(
            schedulable,
            day,
            options,
            busy,
            created_by=user_id,
            existing_task_count=existing_tasks,
        )
        result.unscheduled_activities = excluded + result.unscheduled_activities
        if unknown:
            result.suggestions.append(
                f"Unknown activity id(s) ignored: {', '.join(str(i) for i in unknown)}"
            )
        result.busy_fingerprint = busy_fingerprint(busy)
        return result

    def _guard_commit(
        self, user_id: int, day: date, blocks: list[TimeBlock], conn: sqlite3.Connection
    ) -> None:
        """Last check against stored rows before insert."""
        stored_blocks = self.block_manager.get_blocks_for_day(user_id, day, conn=conn)
        stored = BusySet(BlockManager.busy_intervals(stored_blocks))
        for block in blocks:
            hits = stored.find_conflicts(block.interval())
            if hits:
                raise ScheduleCommitError(
                    f"Block {block.interval().describe()} collides with stored {hits[0].describe()}"
                )
        pair = any_overlap([b.interval() for b in blocks])
        if pair:
            raise ScheduleCommitError(
                f"Computed blocks overlap: {pair[0].describe()} and {pair[1].describe()}"
            )

    def _queue_sync(self, block_ids: list[int]) -> str | None:
        try:
            return self.calendar_sync.enqueue(block_ids)
        except (RuntimeError, sqlite3.Error) as e:
            # Blocks stay committed and marked pending in calendar_sync_map
            logger.error("Could not queue calendar sync for blocks %s: %s", block_ids, e)
            return None
