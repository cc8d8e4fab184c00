# Time Blocker - External Integrations

from .calendar_writer import GoogleCalendarProvider

__all__ = [
    "GoogleCalendarProvider",
]
