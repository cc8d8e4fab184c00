"""
In-memory stand-ins for the external calendar and the job runner.
"""

import itertools
import threading
import uuid
from datetime import datetime

from timeblocker.api.background_tasks import JobState, JobStatus
from timeblocker.time_truth.calendar_sync import EventNotFoundError


class FakeProvider:
    """
    Calendar provider keeping events in a dict.

    `failures` is a list of exceptions raised, in order, by the next calls
    (any method); once empty, calls succeed.
    """

    def __init__(self, failures=None):
        self.events: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.failures = list(failures or [])
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def create_event(self, calendar_id, block):
        with self._lock:
            self.calls.append(("create", calendar_id, block.id))
            self._maybe_fail()
            event_id = f"ext_{next(self._ids)}"
            self.events[event_id] = {"block_id": block.id, "title": block.title}
            return event_id

    def update_event(self, calendar_id, event_id, block):
        with self._lock:
            self.calls.append(("update", calendar_id, event_id))
            self._maybe_fail()
            if event_id not in self.events:
                raise EventNotFoundError(f"{event_id} not found")
            self.events[event_id] = {"block_id": block.id, "title": block.title}
            return event_id

    def delete_event(self, calendar_id, event_id):
        with self._lock:
            self.calls.append(("delete", calendar_id, event_id))
            self._maybe_fail()
            if self.events.pop(event_id, None) is None:
                raise EventNotFoundError(f"{event_id} not found")

    def count(self, action: str) -> int:
        return sum(1 for call in self.calls if call[0] == action)


class FakeJobs:
    """Runs submitted jobs inline and remembers their status."""

    def __init__(self):
        self.submitted: list[tuple] = []
        self._statuses: dict[str, JobStatus] = {}

    def submit(self, func, *args, name=None, **kwargs):
        job_id = uuid.uuid4().hex
        self.submitted.append((name, args))
        status = JobStatus(
            id=job_id,
            name=name or func.__name__,
            state=JobState.RUNNING,
            submitted_at=datetime.now(),
            started_at=datetime.now(),
        )
        try:
            status.result = func(*args, **kwargs)
            status.state = JobState.COMPLETED
        except Exception as e:
            status.error = str(e)
            status.state = JobState.FAILED
        status.completed_at = datetime.now()
        self._statuses[job_id] = status
        return job_id

    def get_status(self, job_id):
        return self._statuses.get(job_id)

    def wait(self, job_id, timeout=None):
        return self._statuses.get(job_id)
