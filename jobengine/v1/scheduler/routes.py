"""
Schedule management API endpoints.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status

from jobengine.services import get_scheduler
from jobengine.v1.core.exceptions import NotFoundError, create_success_response
from jobengine.v1.scheduler.schemas import ScheduleCreateRequest, ScheduleResponse
from jobengine.v1.scheduler.service import JobScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/schedules", tags=["schedules"])


def _schedule_data(schedule) -> dict[str, Any]:
    return ScheduleResponse.from_schedule(schedule).model_dump(mode="json")


@router.get("", response_model=dict)
async def list_schedules(
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """List all registered schedules."""

    schedules = [_schedule_data(s) for s in scheduler.get_schedules()]
    return create_success_response(data={"schedules": schedules, "count": len(schedules)})


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: ScheduleCreateRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Create a schedule that enqueues a job on every fire."""

    schedule = await scheduler.schedule_job(
        request.name,
        request.cron_expression,
        request.job_name,
        request.payload,
        priority=request.priority,
        max_retries=request.max_retries,
        timezone=request.timezone,
        enabled=request.enabled,
    )

    logger.info(
        "Schedule created via API",
        extra={"schedule_name": request.name, "job_name": request.job_name},
    )

    return create_success_response(data=_schedule_data(schedule))


@router.get("/{name}", response_model=dict)
async def get_schedule(
    name: str, scheduler: JobScheduler = Depends(get_scheduler)
) -> dict[str, Any]:
    """Get a schedule by name."""

    schedule = scheduler.get_schedule(name)
    if schedule is None:
        raise NotFoundError(f"Schedule not found: {name}", {"name": name})

    return create_success_response(data=_schedule_data(schedule))


@router.delete("/{name}", response_model=dict)
async def delete_schedule(
    name: str, scheduler: JobScheduler = Depends(get_scheduler)
) -> dict[str, Any]:
    """Remove a schedule."""

    await scheduler.unschedule(name)
    return create_success_response(data={"deleted": True, "name": name})


@router.post("/{name}/trigger", response_model=dict)
async def trigger_schedule(
    name: str, scheduler: JobScheduler = Depends(get_scheduler)
) -> dict[str, Any]:
    """Run a schedule's action immediately."""

    schedule = await scheduler.trigger(name)

    logger.info("Schedule triggered via API", extra={"schedule_name": name})

    return create_success_response(data=_schedule_data(schedule))


@router.post("/{name}/enable", response_model=dict)
async def enable_schedule(
    name: str, scheduler: JobScheduler = Depends(get_scheduler)
) -> dict[str, Any]:
    schedule = await scheduler.enable(name)
    return create_success_response(data=_schedule_data(schedule))


@router.post("/{name}/disable", response_model=dict)
async def disable_schedule(
    name: str, scheduler: JobScheduler = Depends(get_scheduler)
) -> dict[str, Any]:
    schedule = await scheduler.disable(name)
    return create_success_response(data=_schedule_data(schedule))
