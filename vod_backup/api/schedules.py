"""Scheduled job endpoints.

- GET    /api/v1/schedules
- POST   /api/v1/schedules
- PATCH  /api/v1/schedules/{job_id}
- DELETE /api/v1/schedules/{job_id}
- POST   /api/v1/schedules/{job_id}/run
- GET    /api/v1/schedules/patterns
- POST   /api/v1/schedules/validate
"""

from typing import Any, List

import structlog
from fastapi import APIRouter, Depends, status

from vod_backup.api.schemas import (
    CronPattern,
    CronValidateRequest,
    CronValidateResponse,
    ScheduleCreateRequest,
    ScheduleResponse,
    ScheduleRunResponse,
    ScheduleUpdateRequest,
)
from vod_backup.models.schedule import ScheduledJob
from vod_backup.services.scheduler import CRON_PATTERNS, Scheduler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["schedules"])


# Dependency placeholders (to be configured in main app)
async def get_scheduler() -> Scheduler:
    """Get scheduler instance."""
    raise NotImplementedError("Scheduler dependency not configured")


def _to_response(job: ScheduledJob, scheduler: Scheduler) -> ScheduleResponse:
    return ScheduleResponse(**job.to_dict(), scheduled=scheduler.is_scheduled(job.id))


@router.get("/schedules", response_model=List[ScheduleResponse])
async def list_schedules(
    scheduler: Scheduler = Depends(get_scheduler),  # noqa: B008
) -> Any:
    """List all scheduled jobs."""
    return [_to_response(job, scheduler) for job in scheduler.list_jobs()]


@router.get("/schedules/patterns", response_model=List[CronPattern])
async def list_cron_patterns() -> Any:
    """List named cron presets."""
    return [CronPattern(name=name, expression=expr) for name, expr in CRON_PATTERNS.items()]


@router.post("/schedules/validate", response_model=CronValidateResponse)
async def validate_cron(request: CronValidateRequest) -> Any:
    """Check whether a cron expression can be scheduled."""
    return CronValidateResponse(
        cron_expression=request.cron_expression,
        valid=Scheduler.validate(request.cron_expression),
    )


@router.post(
    "/schedules",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Invalid cron expression"}},
)
async def create_schedule(
    request: ScheduleCreateRequest,
    scheduler: Scheduler = Depends(get_scheduler),  # noqa: B008
) -> Any:
    """Create a scheduled job and install its trigger."""
    job = scheduler.add_job(
        owner_id=request.owner_id,
        owner_name=request.owner_name,
        cron_expression=request.cron_expression,
        quality=request.quality,
        enabled=request.enabled,
    )
    return _to_response(job, scheduler)


@router.patch(
    "/schedules/{job_id}",
    response_model=ScheduleResponse,
    responses={
        400: {"description": "Invalid cron expression"},
        404: {"description": "Scheduled job not found"},
    },
)
async def update_schedule(
    job_id: str,
    request: ScheduleUpdateRequest,
    scheduler: Scheduler = Depends(get_scheduler),  # noqa: B008
) -> Any:
    """Update a scheduled job; its trigger is reinstalled."""
    job = scheduler.update_job(
        job_id,
        cron_expression=request.cron_expression,
        quality=request.quality,
        enabled=request.enabled,
        owner_name=request.owner_name,
    )
    return _to_response(job, scheduler)


@router.delete(
    "/schedules/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Scheduled job not found"}},
)
async def delete_schedule(
    job_id: str,
    scheduler: Scheduler = Depends(get_scheduler),  # noqa: B008
) -> None:
    """Stop and delete a scheduled job."""
    scheduler.remove_job(job_id)


@router.post(
    "/schedules/{job_id}/run",
    response_model=ScheduleRunResponse,
    responses={404: {"description": "Scheduled job not found"}},
)
async def run_schedule(
    job_id: str,
    scheduler: Scheduler = Depends(get_scheduler),  # noqa: B008
) -> Any:
    """Check the channel for a new VOD now, without waiting for the trigger."""
    result = await scheduler.run_job(job_id)
    logger.info("scheduled_job_run_requested", job_id=job_id, result=result.result)
    return ScheduleRunResponse(
        job_id=job_id,
        result=result.result,
        task_id=result.task_id,
        source_item_id=result.source_item_id,
    )
