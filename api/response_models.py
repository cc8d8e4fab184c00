"""
Pydantic response models for the scheduling API.

JSON uses camelCase field names. Models are built from the domain objects
with the `from_domain` constructors so routers never hand-assemble dicts.

Usage:
    from api.response_models import ScheduleResultResponse

    @router.post("/schedule/preview", response_model=ScheduleResultResponse)
    def preview(...): ...
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timeblocker.time_truth.conflicts import BlockConflict
from timeblocker.time_truth.models import ScheduleResult, TimeBlock, UnscheduledActivity


class CamelModel(BaseModel):
    """Base for request and response bodies: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==== Time Blocks ====


class TimeBlockResponse(CamelModel):
    id: int | None = None
    activity_id: int | None = None
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    duration: int = Field(description="Minutes, always end - start")
    block_type: str
    is_scheduled: bool
    is_completed: bool
    priority: str
    color: str | None = None
    created_by: int
    status: str = Field(description="proposed or committed")

    @classmethod
    def from_domain(cls, block: TimeBlock) -> "TimeBlockResponse":
        return cls(
            id=block.id,
            activity_id=block.activity_id,
            title=block.title,
            description=block.description,
            start_time=block.start_time,
            end_time=block.end_time,
            duration=block.duration,
            block_type=str(block.block_type),
            is_scheduled=block.is_scheduled,
            is_completed=block.is_completed,
            priority=str(block.priority),
            color=block.color,
            created_by=block.created_by,
            status=block.status,
        )


class TimeBlockListResponse(CamelModel):
    date: str
    items: list[TimeBlockResponse] = Field(default_factory=list)
    total: int


# ==== Schedule Result ====


class UnscheduledActivityResponse(CamelModel):
    id: int
    title: str
    priority: str
    estimated_duration: int | None = None
    due_date: datetime | None = None
    reason: str

    @classmethod
    def from_domain(cls, item: UnscheduledActivity) -> "UnscheduledActivityResponse":
        activity = item.activity
        return cls(
            id=activity.id,
            title=activity.title,
            priority=str(activity.priority),
            estimated_duration=activity.estimated_duration,
            due_date=activity.due_date,
            reason=item.reason,
        )


class ScheduleResultResponse(CamelModel):
    date: str
    scheduled_blocks: list[TimeBlockResponse] = Field(default_factory=list)
    unscheduled_activities: list[UnscheduledActivityResponse] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    committed: bool = False
    busy_fingerprint: str = ""
    recomputed: bool = False
    sync_job_id: str | None = None

    @classmethod
    def from_domain(cls, result: ScheduleResult) -> "ScheduleResultResponse":
        return cls(
            date=result.date.isoformat(),
            scheduled_blocks=[TimeBlockResponse.from_domain(b) for b in result.scheduled_blocks],
            unscheduled_activities=[
                UnscheduledActivityResponse.from_domain(u) for u in result.unscheduled_activities
            ],
            conflicts=result.conflicts,
            suggestions=result.suggestions,
            committed=result.committed,
            busy_fingerprint=result.busy_fingerprint,
            recomputed=result.recomputed,
            sync_job_id=result.sync_job_id,
        )


# ==== Conflict Check ====


class BusyIntervalResponse(CamelModel):
    title: str
    start_time: datetime
    end_time: datetime


class BlockConflictResponse(CamelModel):
    title: str
    start_time: datetime
    end_time: datetime
    overlap_minutes: int
    conflicting_events: list[BusyIntervalResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, conflict: BlockConflict) -> "BlockConflictResponse":
        return cls(
            title=conflict.title,
            start_time=conflict.start_time,
            end_time=conflict.end_time,
            overlap_minutes=conflict.overlap_minutes,
            conflicting_events=[
                BusyIntervalResponse(title=e.label, start_time=e.start, end_time=e.end)
                for e in conflict.conflicting_events
            ],
        )


class CheckConflictsResponse(CamelModel):
    has_conflicts: bool
    conflicts: list[BlockConflictResponse] = Field(default_factory=list)


# ==== Calendar Sync ====


class SyncAcceptedResponse(CamelModel):
    accepted: bool
    job_id: str
    time_block_ids: list[int] = Field(default_factory=list)


class JobStatusResponse(CamelModel):
    id: str
    name: str
    state: str = Field(description="pending, running, completed, failed or cancelled")
    submitted_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None


# ==== Mutation / Health ====


class MutationResponse(CamelModel):
    success: bool = Field(description="Whether the operation succeeded")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class HealthResponse(CamelModel):
    status: str = Field(description="healthy or error")
    schema_version: int
    timestamp: str = Field(description="ISO timestamp")
