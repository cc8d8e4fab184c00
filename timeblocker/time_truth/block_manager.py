"""
Block Manager - persistence of time blocks for the scheduler.

Reads a user's day, writes committed blocks inside the caller's
transaction, and guards manual block creation against overlaps.

Invariants enforced here:
- No two blocks of a user overlap on a day
- An activity has at most one task block
- Deleting an activity removes its blocks
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from timeblocker import safe_sql
from timeblocker.state_store import get_store
from timeblocker.time_truth.conflicts import BusySet
from timeblocker.time_truth.intervals import Interval
from timeblocker.time_truth.models import (
    PRIORITY_COLORS,
    Activity,
    BlockType,
    Priority,
    TimeBlock,
    format_timestamp,
)

logger = logging.getLogger(__name__)


class BlockConflictError(ValueError):
    """A manual block would overlap an existing block."""

    def __init__(self, message: str, conflicting: list[TimeBlock]):
        super().__init__(message)
        self.conflicting = conflicting


@dataclass
class Conflict:
    block_a_id: int
    block_b_id: int
    overlap_start: datetime
    overlap_end: datetime

    def describe(self) -> str:
        return (
            f"Blocks {self.block_a_id} and {self.block_b_id} overlap "
            f"{self.overlap_start:%H:%M}-{self.overlap_end:%H:%M}"
        )


def day_bounds(target_date: date) -> tuple[str, str]:
    """Stored-timestamp bounds [00:00, next 00:00) of a calendar day."""
    start = datetime.combine(target_date, datetime.min.time())
    return format_timestamp(start), format_timestamp(start + timedelta(days=1))


class BlockManager:
    """
    Manages time blocks - the persisted output of scheduling.

    Methods that take `conn` run inside the caller's transaction when one is
    given; otherwise they use their own connection.
    """

    def __init__(self, store=None):
        self.store = store or get_store()

    # ==================== Reads ====================

    def get_blocks_for_day(
        self, user_id: int, target_date: date, conn: sqlite3.Connection | None = None
    ) -> list[TimeBlock]:
        """Every block of the user touching target_date, chronological."""
        day_start, day_end = day_bounds(target_date)
        rows = self.store.query(
            safe_sql.select(
                "time_blocks",
                where="created_by = ? AND start_time < ? AND end_time > ?",
                order_by="start_time, end_time, id",
            ),
            [user_id, day_end, day_start],
            conn=conn,
        )
        return [TimeBlock.from_row(row) for row in rows]

    def get_block(self, block_id: int) -> TimeBlock | None:
        row = self.store.get("time_blocks", block_id)
        return TimeBlock.from_row(row) if row else None

    def get_blocks(self, block_ids: list[int]) -> list[TimeBlock]:
        if not block_ids:
            return []
        rows = self.store.query(
            safe_sql.select(
                "time_blocks",
                where=f"id IN ({safe_sql.placeholders(len(block_ids))})",
                order_by="start_time, id",
            ),
            list(block_ids),
        )
        return [TimeBlock.from_row(row) for row in rows]

    def blocked_activity_ids(
        self, activity_ids: list[int], conn: sqlite3.Connection | None = None
    ) -> set[int]:
        """Subset of activity_ids already referenced by some time block."""
        if not activity_ids:
            return set()
        rows = self.store.query(
            "SELECT DISTINCT activity_id FROM time_blocks "
            f"WHERE activity_id IN ({safe_sql.placeholders(len(activity_ids))})",
            list(activity_ids),
            conn=conn,
        )
        return {row["activity_id"] for row in rows}

    def load_activities(
        self, user_id: int, activity_ids: list[int], conn: sqlite3.Connection | None = None
    ) -> dict[int, Activity]:
        """Activities owned by user_id among activity_ids, keyed by id."""
        if not activity_ids:
            return {}
        rows = self.store.query(
            safe_sql.select(
                "activities",
                where=(
                    f"created_by = ? AND id IN ({safe_sql.placeholders(len(activity_ids))})"
                ),
            ),
            [user_id, *activity_ids],
            conn=conn,
        )
        return {row["id"]: Activity.from_row(row) for row in rows}

    # ==================== Writes ====================

    def insert_blocks(self, blocks: list[TimeBlock], conn: sqlite3.Connection) -> list[TimeBlock]:
        """
        Persist blocks inside an open transaction. Assigns ids in place.

        Returns the same block objects.
        """
        now = datetime.now().isoformat()
        for block in blocks:
            row = block.to_row()
            row["created_at"] = now
            row["updated_at"] = now
            block.id = self.store.insert("time_blocks", row, conn=conn)
        return blocks

    def create_block(
        self,
        user_id: int,
        title: str,
        start_time: datetime,
        end_time: datetime,
        block_type: str = BlockType.FOCUS,
        activity_id: int | None = None,
        description: str | None = None,
        priority: str = Priority.NORMAL,
    ) -> TimeBlock:
        """
        Create a manual block, committed immediately.

        Validates:
        - end after start, same calendar day
        - no overlap with the user's existing blocks
        - activity has no block yet (if given)

        Raises:
            ValueError: invalid times or activity already blocked
            BlockConflictError: overlaps an existing block
        """
        if end_time <= start_time:
            raise ValueError("End time must be after start time")
        if end_time.date() != start_time.date() and end_time.time() != datetime.min.time():
            raise ValueError("A time block must start and end on the same day")

        block = TimeBlock(
            activity_id=activity_id,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            block_type=block_type,
            priority=priority,
            color=PRIORITY_COLORS.get(priority, PRIORITY_COLORS[Priority.NORMAL]),
            created_by=user_id,
            is_scheduled=True,
        )

        with self.store.transaction() as conn:
            if activity_id is not None and self.blocked_activity_ids([activity_id], conn):
                raise ValueError(f"Activity {activity_id} already has a time block")

            existing = self.get_blocks_for_day(user_id, start_time.date(), conn=conn)
            busy = BusySet(b.interval() for b in existing)
            hits = busy.find_conflicts(block.interval())
            if hits:
                overlapping = [b for b in existing if b.interval() in hits]
                raise BlockConflictError(
                    f"Overlaps with existing block: {hits[0].describe()}", overlapping
                )

            self.insert_blocks([block], conn)

        logger.info("Created manual block %s for user %s", block.id, user_id)
        return block

    def delete_block(self, block_id: int, user_id: int | None = None) -> bool:
        """
        Delete a block. With user_id, only the owner's block is deleted.

        A task block takes the break scheduled right after it along, so no
        orphaned break keeps its time busy.
        """
        where = "id = ?" if user_id is None else "id = ? AND created_by = ?"
        params = [block_id] if user_id is None else [block_id, user_id]

        with self.store.transaction() as conn:
            rows = self.store.query(safe_sql.select("time_blocks", where=where), params, conn=conn)
            if not rows:
                return False
            block = rows[0]
            conn.execute(safe_sql.delete("time_blocks", where="id = ?"), [block_id])
            if block["block_type"] == BlockType.TASK:
                cursor = conn.execute(
                    safe_sql.delete(
                        "time_blocks",
                        where="created_by = ? AND block_type = ? AND activity_id IS NULL "
                        "AND start_time = ?",
                    ),
                    [block["created_by"], str(BlockType.BREAK), block["end_time"]],
                )
                if cursor.rowcount:
                    logger.debug("Removed break following block %s", block_id)
        return True

    def delete_blocks_for_activity(self, activity_id: int) -> list[int]:
        """Remove every block of an activity. Returns the removed ids."""
        with self.store.transaction() as conn:
            rows = self.store.query(
                "SELECT id FROM time_blocks WHERE activity_id = ?", [activity_id], conn=conn
            )
            conn.execute(safe_sql.delete("time_blocks", where="activity_id = ?"), [activity_id])
        removed = [row["id"] for row in rows]
        if removed:
            logger.info("Removed %d block(s) of activity %s", len(removed), activity_id)
        return removed

    # ==================== Integrity ====================

    def get_conflicts(self, user_id: int, target_date: date) -> list[Conflict]:
        """
        Detect overlapping stored blocks (should never happen if invariants hold).
        """
        blocks = self.get_blocks_for_day(user_id, target_date)
        conflicts = []

        for i, a in enumerate(blocks):
            for b in blocks[i + 1 :]:
                if b.start_time >= a.end_time:
                    break
                if a.start_time < b.end_time and b.start_time < a.end_time:
                    conflicts.append(
                        Conflict(
                            block_a_id=a.id,
                            block_b_id=b.id,
                            overlap_start=max(a.start_time, b.start_time),
                            overlap_end=min(a.end_time, b.end_time),
                        )
                    )

        return conflicts

    @staticmethod
    def busy_intervals(blocks: list[TimeBlock]) -> list[Interval]:
        return [b.interval() for b in blocks if b.end_time > b.start_time]
