"""
Scheduling API Router - preview, confirm and inspect time blocks.

Endpoints:
- POST /api/schedule/preview - proposed blocks, nothing written
- POST /api/schedule/confirm - recompute and commit blocks
- POST /api/time-blocks/check-conflicts - manual blocks vs calendar events
- GET /api/time-blocks?date= - a day's blocks
- DELETE /api/time-blocks/{block_id} - delete a block, queue event removal
- POST /api/calendar/sync - queue blocks for calendar sync (202)
- GET /api/calendar/sync/{job_id} - sync job status

The caller is identified by the X-User-Id header. Handlers are plain `def`
so blocking SQLite work runs on FastAPI's thread pool.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import Field, field_validator

from api.response_models import (
    BlockConflictResponse,
    CamelModel,
    CheckConflictsResponse,
    JobStatusResponse,
    MutationResponse,
    ScheduleResultResponse,
    SyncAcceptedResponse,
    TimeBlockListResponse,
    TimeBlockResponse,
)
from timeblocker.time_truth.models import to_local
from timeblocker.time_truth.options import ScheduleValidationError
from timeblocker.time_truth.scheduler import Scheduler, parse_target_date

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scheduling"])

# Global scheduler instance
_scheduler: Scheduler | None = None


def get_scheduler() -> Scheduler:
    """Get or create the global Scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler()
    return _scheduler


def get_current_user_id(x_user_id: int | None = Header(default=None)) -> int:
    """Caller identity. Tenant resolution happens upstream of this service."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def validation_error(e: ScheduleValidationError) -> HTTPException:
    logger.info(f"Rejected scheduling request: {e}")
    return HTTPException(status_code=400, detail=e.to_dict())


# Pydantic models for API


class ScheduleRequest(CamelModel):
    """Activities to place on a day. Options are merged over the defaults."""

    activity_ids: list[int] = Field(default_factory=list)
    date: str = Field(..., description="YYYY-MM-DD")
    options: dict[str, Any] | None = None


class ConfirmRequest(ScheduleRequest):
    preview_fingerprint: str | None = Field(
        default=None, description="busyFingerprint of the preview being confirmed"
    )


class BlockDraft(CamelModel):
    title: str = ""
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _local_time(cls, value: datetime) -> datetime:
        return to_local(value)


class CheckConflictsRequest(CamelModel):
    time_blocks: list[BlockDraft] = Field(default_factory=list)


class SyncRequest(CamelModel):
    time_block_ids: list[int] = Field(..., min_length=1)


# Endpoints


@router.post("/schedule/preview", response_model=ScheduleResultResponse)
def preview_schedule(
    request: ScheduleRequest,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Compute a proposed schedule without writing anything."""
    try:
        result = scheduler.preview(user_id, request.activity_ids, request.date, request.options)
        return ScheduleResultResponse.from_domain(result)
    except ScheduleValidationError as e:
        raise validation_error(e) from e
    except Exception as e:
        logger.error(f"Error previewing schedule: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/schedule/confirm", response_model=ScheduleResultResponse)
def confirm_schedule(
    request: ConfirmRequest,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Recompute against the current busy state and commit the blocks."""
    try:
        result = scheduler.confirm(
            user_id,
            request.activity_ids,
            request.date,
            request.options,
            preview_fingerprint=request.preview_fingerprint,
        )
        return ScheduleResultResponse.from_domain(result)
    except ScheduleValidationError as e:
        raise validation_error(e) from e
    except Exception as e:
        logger.error(f"Error confirming schedule: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/time-blocks/check-conflicts", response_model=CheckConflictsResponse)
def check_conflicts(
    request: CheckConflictsRequest,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Which manual blocks overlap existing calendar events."""
    for index, draft in enumerate(request.time_blocks):
        if draft.end_time <= draft.start_time:
            raise HTTPException(
                status_code=400,
                detail={
                    "field": f"timeBlocks.{index}.endTime",
                    "message": "must be after startTime",
                },
            )
    try:
        conflicts = scheduler.check_conflicts(user_id, request.time_blocks)
        return CheckConflictsResponse(
            has_conflicts=bool(conflicts),
            conflicts=[BlockConflictResponse.from_domain(c) for c in conflicts],
        )
    except Exception as e:
        logger.error(f"Error checking conflicts: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/time-blocks", response_model=TimeBlockListResponse)
def list_time_blocks(
    date: str = Query(..., description="YYYY-MM-DD"),
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """All blocks of the caller on a day, chronological."""
    try:
        day = parse_target_date(date)
        blocks = scheduler.day_blocks(user_id, day)
        return TimeBlockListResponse(
            date=day.isoformat(),
            items=[TimeBlockResponse.from_domain(b) for b in blocks],
            total=len(blocks),
        )
    except ScheduleValidationError as e:
        raise validation_error(e) from e
    except Exception as e:
        logger.error(f"Error listing time blocks: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.delete("/time-blocks/{block_id}", response_model=MutationResponse)
def delete_time_block(
    block_id: int,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Delete one of the caller's blocks."""
    try:
        deleted = scheduler.delete_block(user_id, block_id)
    except Exception as e:
        logger.error(f"Error deleting time block {block_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e

    if not deleted:
        raise HTTPException(status_code=404, detail="Time block not found")
    return {"success": True, "id": block_id}


@router.post("/calendar/sync", response_model=SyncAcceptedResponse, status_code=202)
def sync_to_calendar(
    request: SyncRequest,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Queue the caller's blocks for calendar sync. Returns before any sync happens."""
    try:
        blocks = scheduler.block_manager.get_blocks(request.time_block_ids)
        owned = [b.id for b in blocks if b.created_by == user_id]
        if not owned:
            raise HTTPException(status_code=404, detail="No matching time blocks")
        job_id = scheduler.calendar_sync.enqueue(owned)
        return SyncAcceptedResponse(accepted=True, job_id=job_id, time_block_ids=owned)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error queueing calendar sync: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/calendar/sync/{job_id}", response_model=JobStatusResponse)
def get_sync_status(
    job_id: str,
    user_id: int = Depends(get_current_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Status of a queued calendar sync job."""
    status = scheduler.calendar_sync.jobs.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return JobStatusResponse.model_validate(status.to_dict())
