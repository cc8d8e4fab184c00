"""
Calendar Writer - Google Calendar provider for block sync.

Creates, updates and deletes the events that mirror committed time blocks,
via the Google Calendar API using a service account with domain-wide
delegation.

Provider errors are classified for the sync worker:
- 429, 5xx, network/transport errors -> TransientSyncError
- 404, 410 -> EventNotFoundError
- other 4xx, credential problems -> PermanentSyncError
"""

import logging

from google.auth import exceptions as auth_exceptions
from googleapiclient.errors import HttpError

from timeblocker import config
from timeblocker.time_truth.calendar_sync import (
    EventNotFoundError,
    PermanentSyncError,
    TransientSyncError,
)
from timeblocker.time_truth.models import TimeBlock

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

EVENT_TITLE_PREFIX = "[Time Block]"

RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


def http_status(error: HttpError) -> int:
    status = getattr(error, "status_code", None) or getattr(error.resp, "status", 0)
    return int(status)


def _is_rate_limited(error: HttpError) -> bool:
    content = error.content or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", "replace")
    return any(reason in content for reason in RATE_LIMIT_REASONS)


def classify_http_error(error: HttpError, action: str):
    """Map a Calendar API HttpError onto the sync error hierarchy."""
    status = http_status(error)
    message = f"{action} failed with HTTP {status}: {error}"
    if status in (404, 410):
        return EventNotFoundError(message)
    if status == 429 or status >= 500:
        return TransientSyncError(message)
    # Calendar reports quota exhaustion as 403
    if status == 403 and _is_rate_limited(error):
        return TransientSyncError(message)
    return PermanentSyncError(message)


class GoogleCalendarProvider:
    """Create, update, and delete block events in Google Calendar."""

    def __init__(
        self,
        credentials_path: str | None = None,
        delegated_user: str | None = None,
        dry_run: bool = False,
        timezone: str | None = None,
    ):
        """
        Args:
            credentials_path: Path to service account JSON
            delegated_user: User to impersonate (optional)
            dry_run: If True, build payloads without calling the API
            timezone: IANA zone of the naive block timestamps
        """
        self.credentials_path = credentials_path or config.CALENDAR_SA_FILE
        self.delegated_user = delegated_user or config.CALENDAR_USER
        self.dry_run = dry_run
        self.timezone = timezone or config.CALENDAR_TIMEZONE
        self._service = None

    def _get_service(self):
        """Get Calendar API service using service account."""
        if self._service:
            return self._service

        if not self.credentials_path:
            raise PermanentSyncError("No calendar service account configured")

        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        try:
            creds = service_account.Credentials.from_service_account_file(
                self.credentials_path, scopes=SCOPES
            )
        except (OSError, ValueError) as e:
            raise PermanentSyncError(f"Failed to load calendar credentials: {e}") from e

        if self.delegated_user:
            creds = creds.with_subject(self.delegated_user)
        self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    def build_event(self, block: TimeBlock) -> dict:
        """Calendar event body for a block."""
        description = f"Scheduled task: {block.title}"
        if block.description:
            description = f"{description}\n\n{block.description}"
        return {
            "summary": f"{EVENT_TITLE_PREFIX} {block.title}",
            "description": description,
            "start": {"dateTime": block.start_time.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": block.end_time.isoformat(), "timeZone": self.timezone},
            "extendedProperties": {"private": {"timeBlockId": str(block.id)}},
        }

    def _execute(self, request, action: str):
        try:
            return request.execute()
        except HttpError as e:
            raise classify_http_error(e, action) from e
        except auth_exceptions.RefreshError as e:
            raise PermanentSyncError(f"{action} failed: credentials rejected: {e}") from e
        except (auth_exceptions.TransportError, OSError) as e:
            raise TransientSyncError(f"{action} failed: {e}") from e

    def create_event(self, calendar_id: str, block: TimeBlock) -> str:
        body = self.build_event(block)
        if self.dry_run:
            logger.info("[dry run] would create event for block %s", block.id)
            return f"dry_run_{block.id}"

        service = self._get_service()
        result = self._execute(
            service.events().insert(calendarId=calendar_id, body=body), "Create event"
        )
        event_id = result["id"]
        logger.info("Created event %s for block %s", event_id, block.id)
        return event_id

    def update_event(self, calendar_id: str, event_id: str, block: TimeBlock) -> str:
        body = self.build_event(block)
        if self.dry_run:
            logger.info("[dry run] would update event %s for block %s", event_id, block.id)
            return event_id

        service = self._get_service()
        self._execute(
            service.events().update(calendarId=calendar_id, eventId=event_id, body=body),
            f"Update event {event_id}",
        )
        logger.info("Updated event %s for block %s", event_id, block.id)
        return event_id

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        if self.dry_run:
            logger.info("[dry run] would delete event %s", event_id)
            return

        service = self._get_service()
        self._execute(
            service.events().delete(calendarId=calendar_id, eventId=event_id),
            f"Delete event {event_id}",
        )
        logger.info("Deleted event %s", event_id)
