"""
Seed helpers for scheduler tests.

Rows are written through StateStore exactly as the CRUD application and the
calendar importer would write them, so tests exercise the real read paths.
"""

from datetime import date, datetime

from timeblocker.state_store import StateStore
from timeblocker.time_truth.models import BlockType, Priority, format_timestamp

DAY = date(2026, 3, 2)
"""A Monday. Default day for scheduling tests."""

USER_ID = 7


def at(clock: str, day: date = DAY) -> datetime:
    """'HH:MM' on day as a naive local datetime."""
    return datetime.combine(day, datetime.strptime(clock, "%H:%M").time())


def seed_activity(
    store: StateStore,
    title: str = "Activity",
    priority: str = Priority.NORMAL,
    estimated_duration: int | None = 60,
    due_date: datetime | None = None,
    status: str = "open",
    created_by: int = USER_ID,
    description: str | None = None,
) -> int:
    """Insert an activity row. Returns its id."""
    return store.insert(
        "activities",
        {
            "title": title,
            "description": description,
            "priority": str(priority),
            "estimated_duration": estimated_duration,
            "due_date": format_timestamp(due_date) if due_date else None,
            "status": status,
            "created_by": created_by,
        },
    )


def seed_event(
    store: StateStore,
    start: datetime,
    end: datetime,
    title: str = "Meeting",
    user_id: int = USER_ID,
    event_id: str | None = None,
) -> str:
    """Insert an imported calendar event. Returns its id."""
    event_id = event_id or f"evt_{start:%H%M}_{end:%H%M}"
    store.upsert(
        "calendar_events",
        {
            "id": event_id,
            "user_id": user_id,
            "title": title,
            "start_time": format_timestamp(start),
            "end_time": format_timestamp(end),
            "source": "external",
        },
    )
    return event_id


def seed_block(
    store: StateStore,
    start: datetime,
    end: datetime,
    title: str = "Block",
    block_type: str = BlockType.TASK,
    activity_id: int | None = None,
    created_by: int = USER_ID,
    is_scheduled: bool = True,
) -> int:
    """Insert a stored time block directly. Returns its id."""
    return store.insert(
        "time_blocks",
        {
            "activity_id": activity_id,
            "title": title,
            "start_time": format_timestamp(start),
            "end_time": format_timestamp(end),
            "duration": int((end - start).total_seconds() // 60),
            "block_type": str(block_type),
            "is_scheduled": 1 if is_scheduled else 0,
            "priority": str(Priority.NORMAL),
            "created_by": created_by,
        },
    )
