"""
Durable storage for job-backed schedules.
"""

import logging

from jobengine.infra.kv import KeyValueStore
from jobengine.v1.scheduler.models import Schedule

logger = logging.getLogger(__name__)

SCHEDULES = "schedules"


def schedule_key(name: str) -> tuple:
    return (SCHEDULES, name)


class ScheduleStore:
    """Keeps schedule records at ("schedules", name)."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def save(self, schedule: Schedule) -> None:
        await self.kv.set(schedule_key(schedule.name), schedule.to_record())

    async def delete(self, name: str) -> None:
        await self.kv.delete(schedule_key(name))

    async def get(self, name: str) -> Schedule | None:
        entry = await self.kv.get(schedule_key(name))
        return Schedule.from_record(entry.value) if entry else None

    async def load_all(self) -> list[Schedule]:
        schedules = []
        async for entry in self.kv.list(prefix=(SCHEDULES,)):
            try:
                schedules.append(Schedule.from_record(entry.value))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping unreadable schedule record",
                    extra={"key": repr(entry.key), "error": str(e)},
                )
        return schedules
