"""
Job records and the key layout used to store them.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(BaseModel):
    """
    A persisted background job.

    `attempts` counts handler runs and is incremented when a worker claims
    the job; `max_retries` is the number of runs allowed after the first.
    """

    id: str
    name: str
    payload: Any = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    attempts: int = 0
    max_retries: int = 3
    error: str | None = None
    result: Any = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    scheduled_for: datetime | None = None
    claimed_by: str | None = None
    timeout_s: float | None = None

    def is_claimable(self) -> bool:
        """Check if the job is waiting in a queue (pending or awaiting backoff)."""
        return self.status in ACTIVE_STATUSES

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_retry(self) -> bool:
        """Check if another attempt is allowed after the current one failed."""
        return self.attempts <= self.max_retries

    @property
    def due_at(self) -> datetime:
        return self.scheduled_for or self.created_at

    @property
    def due_ms(self) -> int:
        return to_millis(self.due_at)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Job":
        return cls.model_validate(record)


# Key layout
JOBS = "jobs"
JOBS_BY_NAME = "jobs_by_name"
QUEUE = "queue"
READY = "ready"
SCHEDULED = "scheduled"


def job_key(job_id: str) -> tuple:
    return (JOBS, job_id)


def name_index_key(name: str, job_id: str) -> tuple:
    return (JOBS_BY_NAME, name, job_id)


def ready_key(job: Job) -> tuple:
    # Negated priority: ascending scan yields highest priority, then earliest due
    return (QUEUE, READY, -job.priority, job.due_ms, job.id)


def scheduled_key(job: Job) -> tuple:
    return (QUEUE, SCHEDULED, job.due_ms, -job.priority, job.id)


def queue_key(job: Job, now: datetime) -> tuple:
    """The single queue row a claimable job should have at `now`."""
    if job.due_ms > to_millis(now):
        return scheduled_key(job)
    return ready_key(job)
