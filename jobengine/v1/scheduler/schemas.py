"""
Scheduler Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobengine.v1.jobs.schemas import MAX_PRIORITY
from jobengine.v1.scheduler.models import Schedule


class ScheduleCreateRequest(BaseModel):
    """Schema for creating a job-backed schedule via API."""

    name: str = Field(..., min_length=1, max_length=200, description="Schedule name")
    cron_expression: str = Field(..., description="Five-field cron expression")
    job_name: str = Field(..., min_length=1, max_length=200, description="Job to enqueue")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: int | None = Field(
        default=None, ge=-MAX_PRIORITY, le=MAX_PRIORITY, description="Job priority"
    )
    max_retries: int | None = Field(default=None, ge=0, le=100, description="Retry budget")
    timezone: str | None = Field(default=None, description="IANA timezone")
    enabled: bool = Field(default=True, description="Start enabled")


class ScheduleResponse(BaseModel):
    name: str
    cron_expression: str
    timezone: str
    enabled: bool
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    last_error: str | None = None
    job_name: str | None = None
    job_payload: Any = None
    job_priority: int | None = None
    job_max_retries: int | None = None

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleResponse":
        return cls.model_validate(schedule.to_record())
