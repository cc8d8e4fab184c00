"""
Thread-safe background job runner for work that must not block a request.

Calendar sync is the main client: a confirm returns as soon as blocks are
committed, and mirroring them to the external calendar happens here.

Features:
- JobManager: submit callables, track status by job id
- JobStatus: lifecycle snapshot (pending -> running -> completed/failed)
- Finished jobs are forgotten after a retention window
"""

import contextvars
import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from timeblocker import config

logger = logging.getLogger(__name__)


class JobState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobStatus:
    """Point-in-time snapshot of a job."""

    id: str
    name: str
    state: JobState
    submitted_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)

    def to_dict(self) -> dict:
        result = self.result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "id": self.id,
            "name": self.name,
            "state": str(self.state),
            "submitted_at": self.submitted_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": result,
            "error": self.error,
        }


@dataclass
class _Job:
    status: JobStatus
    func: Callable
    args: tuple
    kwargs: dict
    future: Future | None = None


class JobManager:
    """
    Runs jobs on a thread pool and keeps their status for polling.

    Usage:
        jobs = JobManager(max_workers=2)
        job_id = jobs.submit(sync.sync_blocks, [1, 2], name="calendar_sync")
        jobs.get_status(job_id)
    """

    def __init__(self, max_workers: int = 2, history_ttl: timedelta = timedelta(hours=1)):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="timeblocker-job"
        )
        self._jobs: dict[str, _Job] = {}
        self._lock = threading.RLock()
        self._history_ttl = history_ttl

    def submit(self, func: Callable, *args: Any, name: str | None = None, **kwargs: Any) -> str:
        """
        Queue func(*args, **kwargs). Returns the job id immediately.
        """
        job_id = uuid.uuid4().hex
        status = JobStatus(
            id=job_id,
            name=name or getattr(func, "__name__", "job"),
            state=JobState.PENDING,
            submitted_at=datetime.now(),
        )

        with self._lock:
            self._cleanup_expired()
            job = _Job(status=status, func=func, args=args, kwargs=kwargs)
            self._jobs[job_id] = job
            # Run in a copy of the caller's context so logs keep its request id
            job.future = self._executor.submit(contextvars.copy_context().run, self._run, job_id)

        logger.info("Job %s (%s) submitted", job_id, status.name)
        return job_id

    def _run(self, job_id: str) -> Any:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            job.status.state = JobState.RUNNING
            job.status.started_at = datetime.now()

        try:
            result = job.func(*job.args, **job.kwargs)
        except Exception as e:
            with self._lock:
                job.status.error = str(e)
                job.status.state = JobState.FAILED
                job.status.completed_at = datetime.now()
            logger.error("Job %s failed: %s", job_id, e)
            raise

        with self._lock:
            job.status.result = result
            job.status.state = JobState.COMPLETED
            job.status.completed_at = datetime.now()
        logger.info("Job %s completed", job_id)
        return result

    def get_status(self, job_id: str) -> JobStatus | None:
        """Snapshot of a job, or None if unknown or expired."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return self._snapshot(job)

    def list_jobs(self) -> list[JobStatus]:
        with self._lock:
            return [self._snapshot(job) for job in self._jobs.values()]

    def wait(self, job_id: str, timeout: float | None = None) -> JobStatus | None:
        """Block until the job finishes (or timeout) and return its status."""
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            return None
        wait_futures([job.future], timeout=timeout)
        return self.get_status(job_id)

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started yet."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.future is None:
                return False
            cancelled = job.future.cancel()
            if cancelled:
                job.status.state = JobState.CANCELLED
                job.status.completed_at = datetime.now()
                logger.info("Job %s cancelled", job_id)
            return cancelled

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("JobManager executor shutdown")

    @staticmethod
    def _snapshot(job: _Job) -> JobStatus:
        s = job.status
        return JobStatus(
            id=s.id,
            name=s.name,
            state=s.state,
            submitted_at=s.submitted_at,
            started_at=s.started_at,
            completed_at=s.completed_at,
            result=s.result,
            error=s.error,
        )

    def _cleanup_expired(self) -> None:
        """Drop finished jobs older than the retention window. Lock must be held."""
        now = datetime.now()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status.completed_at is not None
            and (now - job.status.completed_at) > self._history_ttl
        ]
        for job_id in expired:
            del self._jobs[job_id]
            logger.debug("Cleaned up expired job %s", job_id)


_job_manager: JobManager | None = None
_job_manager_lock = threading.Lock()


def get_job_manager() -> JobManager:
    """Get or create the process-wide JobManager."""
    global _job_manager
    if _job_manager is None:
        with _job_manager_lock:
            if _job_manager is None:
                _job_manager = JobManager(max_workers=config.SYNC_WORKERS)
    return _job_manager
