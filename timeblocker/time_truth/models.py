"""
Time Truth domain objects.

Activity and CalendarEvent are read-only inputs. TimeBlock is the
scheduler's output and persisted entity. ScheduleResult lives for one
request and is never stored.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from zoneinfo import ZoneInfo

from timeblocker import config
from timeblocker.time_truth.intervals import Interval

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class Priority(StrEnum):
    URGENT = "urgent"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_RANK = {Priority.URGENT: 0, Priority.NORMAL: 1, Priority.LOW: 2}

PRIORITY_COLORS = {
    Priority.URGENT: "#dc2626",
    Priority.NORMAL: "#2563eb",
    Priority.LOW: "#16a34a",
}
BREAK_COLOR = "#e5e7eb"


class BlockType(StrEnum):
    TASK = "task"
    BREAK = "break"
    MEETING = "meeting"
    FOCUS = "focus"


class EventSource(StrEnum):
    EXTERNAL = "external"
    INTERNAL = "internal"


COMPLETED_STATUS = "completed"

# Unscheduled reasons
REASON_BELOW_MINIMUM = "duration below minimum block size"
REASON_DAILY_LIMIT = "daily task limit reached"
REASON_NO_FREE_TIME = "insufficient free time"
REASON_COMPLETED = "activity already completed"
REASON_ALREADY_BLOCKED = "activity already has a time block"


def priority_rank(value: str | None) -> int:
    """Rank for sorting; unknown priorities rank with `low`."""
    try:
        return PRIORITY_RANK[Priority(value)]
    except ValueError:
        logger.debug(f"Unknown priority {value!r}, ranking as low")
        return PRIORITY_RANK[Priority.LOW]


def to_local(value: datetime) -> datetime:
    """
    Naive local time in the calendar timezone.

    Aware values are converted, not stripped: 09:00Z is 10:00 in
    Europe/Amsterdam in winter.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(config.CALENDAR_TIMEZONE)).replace(tzinfo=None)


def parse_timestamp(value) -> datetime | None:
    """Accept datetime, date, or ISO strings (as stored in SQLite)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_local(value)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    text = str(value).replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    # Timestamps are naive local time throughout the scheduler
    return to_local(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class Activity:
    """Minimal projection of an activity: all the allocator depends on."""

    id: int
    title: str
    priority: str = Priority.NORMAL
    estimated_duration: int | None = None
    due_date: datetime | None = None
    status: str = "open"
    description: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED_STATUS

    @classmethod
    def from_row(cls, row: dict) -> "Activity":
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            priority=row.get("priority") or Priority.NORMAL,
            estimated_duration=row.get("estimated_duration"),
            due_date=parse_timestamp(row.get("due_date")),
            status=row.get("status") or "open",
            description=row.get("description"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "priority": str(self.priority),
            "estimated_duration": self.estimated_duration,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
        }


@dataclass
class TimeBlock:
    activity_id: int | None
    title: str
    start_time: datetime
    end_time: datetime
    block_type: str = BlockType.TASK
    created_by: int = 0
    priority: str = Priority.NORMAL
    is_scheduled: bool = False
    is_completed: bool = False
    description: str | None = None
    color: str | None = None
    id: int | None = None

    @property
    def duration(self) -> int:
        """Block duration in minutes, always derived from start/end."""
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @property
    def status(self) -> str:
        return "committed" if self.is_scheduled else "proposed"

    @property
    def date(self) -> date:
        return self.start_time.date()

    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time, self.title)

    def to_row(self) -> dict:
        """Column mapping for the time_blocks table (id excluded)."""
        return {
            "activity_id": self.activity_id,
            "title": self.title,
            "description": self.description,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "duration": self.duration,
            "block_type": str(self.block_type),
            "is_scheduled": 1 if self.is_scheduled else 0,
            "is_completed": 1 if self.is_completed else 0,
            "priority": str(self.priority),
            "color": self.color,
            "created_by": self.created_by,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "title": self.title,
            "description": self.description,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "duration": self.duration,
            "block_type": str(self.block_type),
            "is_scheduled": self.is_scheduled,
            "is_completed": self.is_completed,
            "priority": str(self.priority),
            "color": self.color,
            "created_by": self.created_by,
            "status": self.status,
        }

    @classmethod
    def from_row(cls, row: dict) -> "TimeBlock":
        return cls(
            id=row["id"],
            activity_id=row.get("activity_id"),
            title=row.get("title") or "",
            description=row.get("description"),
            start_time=parse_timestamp(row["start_time"]),
            end_time=parse_timestamp(row["end_time"]),
            block_type=row.get("block_type") or BlockType.TASK,
            is_scheduled=bool(row.get("is_scheduled", 0)),
            is_completed=bool(row.get("is_completed", 0)),
            priority=row.get("priority") or Priority.NORMAL,
            color=row.get("color"),
            created_by=row.get("created_by") or 0,
        )


@dataclass(frozen=True)
class CalendarEvent:
    """External busy marker. The allocator treats it as an opaque interval."""

    start_time: datetime
    end_time: datetime
    title: str = ""
    source: str = EventSource.EXTERNAL
    id: str | None = None

    @property
    def is_external(self) -> bool:
        return self.source == EventSource.EXTERNAL

    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time, self.title)

    @classmethod
    def from_row(cls, row: dict) -> "CalendarEvent":
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            start_time=parse_timestamp(row["start_time"]),
            end_time=parse_timestamp(row["end_time"]),
            source=row.get("source") or EventSource.EXTERNAL,
        )


@dataclass(frozen=True)
class UnscheduledActivity:
    activity: Activity
    reason: str

    def to_dict(self) -> dict:
        return {**self.activity.to_dict(), "reason": self.reason}


@dataclass
class ScheduleResult:
    date: date
    scheduled_blocks: list[TimeBlock] = field(default_factory=list)
    unscheduled_activities: list[UnscheduledActivity] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    committed: bool = False
    busy_fingerprint: str = ""
    recomputed: bool = False
    sync_job_id: str | None = None

    @property
    def task_blocks(self) -> list[TimeBlock]:
        return [b for b in self.scheduled_blocks if b.block_type == BlockType.TASK]

    def reason_for(self, activity_id: int) -> str | None:
        for item in self.unscheduled_activities:
            if item.activity.id == activity_id:
                return item.reason
        return None

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "scheduled_blocks": [b.to_dict() for b in self.scheduled_blocks],
            "unscheduled_activities": [u.to_dict() for u in self.unscheduled_activities],
            "conflicts": list(self.conflicts),
            "suggestions": list(self.suggestions),
            "committed": self.committed,
            "busy_fingerprint": self.busy_fingerprint,
            "recomputed": self.recomputed,
            "sync_job_id": self.sync_job_id,
        }
