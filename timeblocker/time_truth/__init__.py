"""
Time Truth Module

Turns a list of activities into committed time blocks on a day.

Objects:
- Activity (read-only projection: priority, estimate, due date)
- TimeBlock (scheduled time slots, proposed or committed)
- CalendarEvent (external busy time)

Invariants:
- Time blocks of a user never overlap
- Blocks stay inside working hours
- Every activity that is not placed carries a reason
- The external calendar mirrors blocks, it never decides them
"""

from .allocator import Allocator
from .block_manager import BlockConflictError, BlockManager
from .calendar_sync import CalendarSync
from .models import Activity, CalendarEvent, ScheduleResult, TimeBlock
from .options import ScheduleOptions, ScheduleValidationError
from .scheduler import Scheduler

__all__ = [
    "Activity",
    "Allocator",
    "BlockConflictError",
    "BlockManager",
    "CalendarEvent",
    "CalendarSync",
    "ScheduleOptions",
    "ScheduleResult",
    "ScheduleValidationError",
    "Scheduler",
    "TimeBlock",
]
