"""
Schedule records.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ScheduleAction = Callable[[], Awaitable[None] | None]


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Schedule:
    """
    A named cron schedule.

    `action` is the in-process callable fired on each run. Job-backed
    schedules also carry `job_name` and its enqueue options, which is what
    gets persisted; plain callables cannot survive a restart.
    """

    name: str
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool = True
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    last_error: str | None = None
    action: ScheduleAction | None = field(default=None, repr=False, compare=False)
    job_name: str | None = None
    job_payload: Any = None
    job_priority: int | None = None
    job_max_retries: int | None = None

    @property
    def is_job_backed(self) -> bool:
        return self.job_name is not None

    def to_record(self) -> dict[str, Any]:
        """Serialize for storage and API responses (the action is omitted)."""
        return {
            "name": self.name,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "enabled": self.enabled,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "last_error": self.last_error,
            "job_name": self.job_name,
            "job_payload": self.job_payload,
            "job_priority": self.job_priority,
            "job_max_retries": self.job_max_retries,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Schedule":
        return cls(
            name=record["name"],
            cron_expression=record["cron_expression"],
            timezone=record.get("timezone", "UTC"),
            enabled=record.get("enabled", True),
            next_run=_parse_datetime(record.get("next_run")),
            last_run=_parse_datetime(record.get("last_run")),
            run_count=record.get("run_count", 0),
            last_error=record.get("last_error"),
            job_name=record.get("job_name"),
            job_payload=record.get("job_payload"),
            job_priority=record.get("job_priority"),
            job_max_retries=record.get("job_max_retries"),
        )
