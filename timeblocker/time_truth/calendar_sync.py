"""
Calendar Sync - mirror committed task blocks to the external calendar.

Outbound: each committed task block gets at most one external event. The
block_id -> external_event_id mapping lives in calendar_sync_map, so
re-syncing a block updates its event instead of creating a duplicate.

Inbound: external calendar events are stored in calendar_events and read
back as busy markers for scheduling.

Sync never touches the committed schedule. Failures are retried when
transient and otherwise recorded as sync_status='failed' on the mapping row.
"""

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol

from timeblocker import config, safe_sql
from timeblocker.resilience import RetryConfig, retry_with_backoff
from timeblocker.state_store import get_store
from timeblocker.time_truth.block_manager import day_bounds
from timeblocker.time_truth.locks import KeyedLock
from timeblocker.time_truth.models import (
    BlockType,
    CalendarEvent,
    EventSource,
    TimeBlock,
    format_timestamp,
)

logger = logging.getLogger(__name__)

# Shared by every CalendarSync in the process: one sync or removal per block at a time
_block_locks = KeyedLock()


# ============================================================
# Provider port
# ============================================================


class SyncError(Exception):
    """Base class for calendar provider failures."""


class TransientSyncError(SyncError):
    """Temporary failure (rate limit, 5xx, network). Worth retrying."""


class PermanentSyncError(SyncError):
    """Failure that will not go away by retrying (auth, bad request)."""


class EventNotFoundError(PermanentSyncError):
    """The external event no longer exists."""


class CalendarProvider(Protocol):
    """What the sync worker needs from an external calendar."""

    def create_event(self, calendar_id: str, block: TimeBlock) -> str:
        """Create an event mirroring block. Returns the external event id."""
        ...

    def update_event(self, calendar_id: str, event_id: str, block: TimeBlock) -> str:
        """Overwrite an existing event with block's data. Returns its id."""
        ...

    def delete_event(self, calendar_id: str, event_id: str) -> None: ...


# ============================================================
# Results
# ============================================================


class SyncStatus:
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"
    REMOVED = "removed"


@dataclass
class SyncOutcome:
    block_id: int
    status: str
    external_event_id: str | None = None
    attempts: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "block_id": self.block_id,
            "status": self.status,
            "external_event_id": self.external_event_id,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class SyncReport:
    outcomes: list[SyncOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def synced(self) -> int:
        return self._count(SyncStatus.SYNCED)

    @property
    def failed(self) -> int:
        return self._count(SyncStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(SyncStatus.SKIPPED)

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ============================================================
# Worker
# ============================================================


class CalendarSync:
    """
    Synchronizes committed time blocks with an external calendar.

    Responsibilities:
    - Create or update one external event per task block
    - Remove external events of deleted blocks
    - Record sync state per block
    - Serve inbound calendar events as busy markers
    """

    def __init__(
        self,
        store=None,
        provider: CalendarProvider | None = None,
        jobs=None,
        retry: RetryConfig | None = None,
        calendar_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store or get_store()
        self._provider = provider
        self._jobs = jobs
        self.retry = retry or RetryConfig.from_config()
        self.calendar_id = calendar_id or config.CALENDAR_ID
        self._sleep = sleep

    @property
    def provider(self) -> CalendarProvider:
        if self._provider is None:
            from timeblocker.integrations.calendar_writer import GoogleCalendarProvider

            self._provider = GoogleCalendarProvider(
                credentials_path=config.CALENDAR_SA_FILE,
                delegated_user=config.CALENDAR_USER,
                dry_run=config.CALENDAR_DRY_RUN,
            )
        return self._provider

    @property
    def jobs(self):
        if self._jobs is None:
            from timeblocker.api.background_tasks import get_job_manager

            self._jobs = get_job_manager()
        return self._jobs

    # ==================== Inbound events ====================

    def get_events_for_day(
        self, user_id: int, target_date: date, conn: sqlite3.Connection | None = None
    ) -> list[CalendarEvent]:
        """Calendar events of the user touching target_date, chronological."""
        day_start, day_end = day_bounds(target_date)
        rows = self.store.query(
            safe_sql.select(
                "calendar_events",
                where="user_id = ? AND start_time < ? AND end_time > ?",
                order_by="start_time, end_time",
            ),
            [user_id, day_end, day_start],
            conn=conn,
        )
        return [CalendarEvent.from_row(row) for row in rows]

    def record_event(self, user_id: int, event: CalendarEvent) -> str:
        """Store (or replace) an inbound calendar event. Returns its id."""
        if event.end_time < event.start_time:
            raise ValueError("Event end precedes start")
        event_id = event.id or f"evt_{uuid.uuid4().hex[:12]}"
        self.store.upsert(
            "calendar_events",
            {
                "id": event_id,
                "user_id": user_id,
                "title": event.title,
                "start_time": format_timestamp(event.start_time),
                "end_time": format_timestamp(event.end_time),
                "source": str(event.source or EventSource.EXTERNAL),
                "created_at": datetime.now().isoformat(),
            },
        )
        return event_id

    # ==================== Outbound sync ====================

    def enqueue(self, block_ids: Iterable[int]) -> str:
        """
        Queue block_ids for mirroring and return a job id immediately.
        """
        ids = list(dict.fromkeys(block_ids))
        self._mark_pending(ids)
        job_id = self.jobs.submit(self.sync_blocks, ids, name="calendar_sync")
        logger.info("Queued calendar sync of %d block(s) as job %s", len(ids), job_id)
        return job_id

    def enqueue_removal(self, block_id: int) -> str:
        return self.jobs.submit(self.remove_block, block_id, name="calendar_remove")

    def sync_blocks(self, block_ids: Iterable[int]) -> SyncReport:
        """Mirror each block in turn. One block's failure does not stop the rest."""
        report = SyncReport()
        for block_id in block_ids:
            report.outcomes.append(self.sync_block(block_id))
        logger.info(
            "Calendar sync finished: %d synced, %d failed, %d skipped",
            report.synced,
            report.failed,
            report.skipped,
        )
        return report

    def sync_block(self, block_id: int) -> SyncOutcome:
        """
        Create or update the external event of one block.

        Only task blocks are mirrored. A mapped event that has vanished on
        the provider side is re-created. Jobs touching the same block run one
        at a time, so overlapping syncs update rather than both create.
        """
        with _block_locks.hold(block_id):
            return self._sync_block(block_id)

    def _sync_block(self, block_id: int) -> SyncOutcome:
        row = self.store.get("time_blocks", block_id)
        block = TimeBlock.from_row(row) if row else None
        state = self.get_sync_state(block_id) or {}

        if block is None or block.block_type != BlockType.TASK:
            error = "block not found" if block is None else "only task blocks are mirrored"
            if state:
                # Settle a queued row; a mapped event stays for remove_block
                self._write_state(block_id, SyncStatus.SKIPPED, error=error)
            return SyncOutcome(block_id, SyncStatus.SKIPPED, error=error)

        known_event_id = state.get("external_event_id")
        attempts = 0

        def push() -> str:
            nonlocal attempts
            attempts += 1
            if known_event_id:
                try:
                    return self.provider.update_event(self.calendar_id, known_event_id, block)
                except EventNotFoundError:
                    logger.info(
                        "Event %s for block %s is gone, re-creating", known_event_id, block_id
                    )
            return self.provider.create_event(self.calendar_id, block)

        try:
            event_id = retry_with_backoff(
                push, self.retry, logger, retry_on=(TransientSyncError,), sleep=self._sleep
            )
        except SyncError as e:
            logger.warning("Calendar sync of block %s failed: %s", block_id, e)
            self._write_state(
                block_id,
                SyncStatus.FAILED,
                external_event_id=known_event_id,
                attempts=attempts,
                error=str(e),
            )
            return SyncOutcome(
                block_id, SyncStatus.FAILED, known_event_id, attempts=attempts, error=str(e)
            )

        self._write_state(
            block_id, SyncStatus.SYNCED, external_event_id=event_id, attempts=attempts
        )
        return SyncOutcome(block_id, SyncStatus.SYNCED, event_id, attempts=attempts)

    def remove_block(self, block_id: int) -> SyncOutcome:
        """Delete the external event of a (deleted) block and forget the mapping."""
        with _block_locks.hold(block_id):
            return self._remove_block(block_id)

    def _remove_block(self, block_id: int) -> SyncOutcome:
        state = self.get_sync_state(block_id)
        event_id = state.get("external_event_id") if state else None
        if not event_id:
            if state:
                self.store.delete("calendar_sync_map", block_id, id_column="block_id")
            return SyncOutcome(block_id, SyncStatus.SKIPPED, error="no external event")

        attempts = 0

        def delete() -> None:
            nonlocal attempts
            attempts += 1
            try:
                self.provider.delete_event(state.get("calendar_id") or self.calendar_id, event_id)
            except EventNotFoundError:
                logger.debug("Event %s already gone", event_id)

        try:
            retry_with_backoff(
                delete, self.retry, logger, retry_on=(TransientSyncError,), sleep=self._sleep
            )
        except SyncError as e:
            logger.warning("Removing event %s of block %s failed: %s", event_id, block_id, e)
            self._write_state(
                block_id,
                SyncStatus.FAILED,
                external_event_id=event_id,
                attempts=attempts,
                error=str(e),
            )
            return SyncOutcome(
                block_id, SyncStatus.FAILED, event_id, attempts=attempts, error=str(e)
            )

        self.store.delete("calendar_sync_map", block_id, id_column="block_id")
        return SyncOutcome(block_id, SyncStatus.REMOVED, event_id, attempts=attempts)

    # ==================== Mapping state ====================

    def get_sync_state(self, block_id: int) -> dict | None:
        return self.store.get("calendar_sync_map", block_id, id_column="block_id")

    def get_unsynced(self) -> list[int]:
        """Block ids whose last sync is pending or failed."""
        rows = self.store.query(
            safe_sql.select(
                "calendar_sync_map",
                columns="block_id",
                where="sync_status IN (?, ?)",
                order_by="block_id",
            ),
            [SyncStatus.PENDING, SyncStatus.FAILED],
        )
        return [row["block_id"] for row in rows]

    def _mark_pending(self, block_ids: list[int]) -> None:
        # Status only: a job already running for a block may be writing its event id
        now = datetime.now().isoformat()
        with self.store.transaction() as conn:
            for block_id in block_ids:
                self.store.upsert(
                    "calendar_sync_map",
                    {
                        "block_id": block_id,
                        "calendar_id": self.calendar_id,
                        "sync_status": SyncStatus.PENDING,
                        "updated_at": now,
                    },
                    key="block_id",
                    conn=conn,
                    update=["sync_status", "updated_at"],
                )

    def _write_state(
        self,
        block_id: int,
        status: str,
        external_event_id: str | None = None,
        attempts: int = 0,
        error: str | None = None,
    ) -> None:
        previous = self.get_sync_state(block_id) or {}
        now = datetime.now().isoformat()
        self.store.upsert(
            "calendar_sync_map",
            {
                "block_id": block_id,
                "calendar_id": previous.get("calendar_id") or self.calendar_id,
                "external_event_id": external_event_id or previous.get("external_event_id"),
                "sync_status": status,
                "attempts": attempts,
                "last_error": error,
                "synced_at": now if status == SyncStatus.SYNCED else previous.get("synced_at"),
                "updated_at": now,
            },
            key="block_id",
        )
