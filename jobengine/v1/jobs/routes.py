"""
Job management API endpoints.

Admin endpoints for enqueueing, inspecting, retrying, and reaping jobs.
"""

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from jobengine.services import get_queue
from jobengine.v1.core.exceptions import NotFoundError, create_success_response
from jobengine.v1.jobs.models import JobStatus
from jobengine.v1.jobs.queue import JobQueue
from jobengine.v1.jobs.schemas import (
    JobCleanupRequest,
    JobCleanupResponse,
    JobEnqueueRequest,
    JobListResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    queue: JobQueue = Depends(get_queue),
) -> dict[str, Any]:
    """Enqueue a new background job."""

    job_id = await queue.add(
        job_request.name,
        job_request.payload,
        priority=job_request.priority,
        max_retries=job_request.max_retries,
        delay_ms=job_request.delay_ms,
        scheduled_for=job_request.scheduled_for,
        job_id=job_request.job_id,
        timeout_s=job_request.timeout_s,
    )
    job = await queue.get_job(job_id)

    logger.info(
        "Job enqueued via API", extra={"job_id": job_id, "job_name": job_request.name}
    )

    return create_success_response(
        data={"job_id": job_id, "job": job.model_dump(mode="json") if job else None}
    )


@router.get("", response_model=dict)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    name: str | None = Query(default=None, description="Filter by job name"),
    limit: int = Query(default=50, ge=1, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    queue: JobQueue = Depends(get_queue),
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""

    jobs = await queue.list_jobs(status=status, name=name, limit=limit, offset=offset)
    response_data = JobListResponse(jobs=jobs, count=len(jobs), limit=limit, offset=offset)

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_job_stats(queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:
    """Get job counts by status."""

    stats = await queue.get_stats()
    return create_success_response(data=stats.model_dump())


@router.post("/cleanup", response_model=dict)
async def cleanup_jobs(
    request: JobCleanupRequest | None = None,
    queue: JobQueue = Depends(get_queue),
) -> dict[str, Any]:
    """Delete completed and failed jobs older than the cutoff."""

    days_old = request.days_old if request and request.days_old is not None else None
    if days_old is None:
        days_old = queue.settings.job_cleanup_after_days
    cutoff = queue.clock() - timedelta(days=days_old)

    deleted = await queue.cleanup(cutoff)
    response_data = JobCleanupResponse(deleted=deleted, cutoff=cutoff)

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(job_id: str, queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await queue.get_job(job_id)
    if not job:
        raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})

    return create_success_response(data=job.model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(job_id: str, queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:
    """Retry a failed job."""

    job = await queue.retry(job_id)

    logger.info("Job retried via API", extra={"job_id": job_id})

    return create_success_response(data=job.model_dump(mode="json"))


@router.delete("/{job_id}", response_model=dict)
async def delete_job(job_id: str, queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:
    """Delete a job and its queue entries."""

    await queue.delete(job_id)

    logger.info("Job deleted via API", extra={"job_id": job_id})

    return create_success_response(data={"deleted": True, "job_id": job_id})
