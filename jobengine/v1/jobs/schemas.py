"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from jobengine.v1.jobs.models import Job

MAX_PRIORITY = 1_000_000


class JobCreate(BaseModel):
    """Schema for creating a new job."""

    name: str = Field(..., min_length=1, max_length=200, description="Job name")
    payload: Any = Field(default_factory=dict, description="Job parameters")
    priority: int = Field(
        default=0, ge=-MAX_PRIORITY, le=MAX_PRIORITY, description="Priority (higher runs first)"
    )
    max_retries: int = Field(
        default=3, ge=0, le=100, description="Retries allowed after the first attempt"
    )
    delay_ms: int | None = Field(
        default=None, ge=0, description="Delay before first execution"
    )
    scheduled_for: datetime | None = Field(
        default=None, description="Earliest time to run the job"
    )
    job_id: str | None = Field(
        default=None, min_length=1, max_length=200, description="Caller-chosen job ID"
    )
    timeout_s: float | None = Field(
        default=None, gt=0, description="Handler deadline for this job"
    )

    @model_validator(mode="after")
    def check_timing(self) -> "JobCreate":
        if self.delay_ms is not None and self.scheduled_for is not None:
            raise ValueError("delay_ms and scheduled_for are mutually exclusive")
        if self.scheduled_for is not None and self.scheduled_for.tzinfo is None:
            raise ValueError("scheduled_for must be timezone-aware")
        return self


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    name: str = Field(..., min_length=1, description="Job name")
    payload: Any = Field(default_factory=dict, description="Job payload")
    priority: int | None = Field(
        default=None, ge=-MAX_PRIORITY, le=MAX_PRIORITY, description="Job priority"
    )
    max_retries: int | None = Field(default=None, ge=0, le=100, description="Retry budget")
    delay_ms: int | None = Field(default=None, ge=0, description="Delay in milliseconds")
    scheduled_for: datetime | None = Field(default=None, description="Scheduled run time")
    job_id: str | None = Field(default=None, description="Caller-chosen job ID")
    timeout_s: float | None = Field(default=None, gt=0, description="Handler deadline")


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[Job]
    count: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for queue statistics."""

    pending: int = 0
    retrying: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class JobCleanupRequest(BaseModel):
    """Schema for reaping old terminal jobs."""

    days_old: int | None = Field(
        default=None, ge=0, description="Age cutoff in days (defaults to retention setting)"
    )


class JobCleanupResponse(BaseModel):
    deleted: int
    cutoff: datetime
