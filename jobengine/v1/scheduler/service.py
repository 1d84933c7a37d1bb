"""
Cron scheduler: fires named schedules in-process.

A schedule's action is either an arbitrary callable or, for job-backed
schedules, an enqueue on the JobQueue. Job-backed schedules are persisted
when a ScheduleStore is configured and restored by `load_schedules`.
"""

import asyncio
import copy
import inspect
from collections.abc import Callable
from datetime import datetime
from typing import Any

from jobengine.config.logging import get_logger, schedule_context
from jobengine.config.settings import Settings
from jobengine.v1.core.exceptions import (
    ConflictError,
    InvalidCronExpression,
    NotFoundError,
    ValidationError,
)
from jobengine.v1.jobs.queue import JobQueue
from jobengine.v1.scheduler.cron import CronExpression, resolve_timezone
from jobengine.v1.scheduler.models import Schedule, ScheduleAction
from jobengine.v1.scheduler.persistence import ScheduleStore

logger = get_logger(__name__)

MIN_SLEEP_S = 1.0


class JobScheduler:
    """Named cron schedules with a background tick loop."""

    def __init__(
        self,
        queue: JobQueue,
        settings: Settings,
        store: ScheduleStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.queue = queue
        self.settings = settings
        self.store = store
        self.clock = clock or queue.clock
        self.check_interval_s = settings.scheduler_check_interval_s
        self.running = False
        self._schedules: dict[str, Schedule] = {}
        self._crons: dict[str, CronExpression] = {}
        self._task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule(
        self,
        name: str,
        cron_expression: str,
        action: ScheduleAction,
        timezone: str | None = None,
        enabled: bool = True,
    ) -> Schedule:
        """
        Register a schedule that calls `action` on every fire.

        Raises:
            ValidationError: empty name, non-callable action, unknown timezone
            InvalidCronExpression: malformed cron expression
            ConflictError: a schedule with this name already exists
        """
        return self._register(name, cron_expression, action, timezone, enabled)

    async def schedule_job(
        self,
        name: str,
        cron_expression: str,
        job_name: str,
        payload: Any = None,
        *,
        priority: int | None = None,
        max_retries: int | None = None,
        timezone: str | None = None,
        enabled: bool = True,
    ) -> Schedule:
        """Register a schedule that enqueues `job_name` on every fire."""
        if not job_name or not job_name.strip():
            raise ValidationError("job_name must not be empty")

        schedule = self._register(
            name,
            cron_expression,
            self._enqueue_action(job_name, payload, priority, max_retries),
            timezone,
            enabled,
            job_name=job_name,
            job_payload=payload,
            job_priority=priority,
            job_max_retries=max_retries,
        )
        if self.store is not None:
            try:
                await self.store.save(schedule)
            except Exception:
                self._forget(name)
                raise
        return schedule

    def _register(
        self,
        name: str,
        cron_expression: str,
        action: ScheduleAction,
        timezone: str | None,
        enabled: bool,
        **job_fields: Any,
    ) -> Schedule:
        if not name or not name.strip():
            raise ValidationError("Schedule name must not be empty")
        if not callable(action):
            raise ValidationError(f"Action for schedule '{name}' must be callable")

        cron = CronExpression.parse(cron_expression)
        tz_name = timezone or self.settings.scheduler_default_timezone
        zone = resolve_timezone(tz_name)

        if name in self._schedules:
            raise ConflictError(f"Schedule already exists: {name}", {"name": name})

        schedule = Schedule(
            name=name,
            cron_expression=cron.expression,
            timezone=tz_name,
            enabled=enabled,
            next_run=cron.next_after(self.clock(), zone),
            action=action,
            **job_fields,
        )
        self._schedules[name] = schedule
        self._crons[name] = cron
        self._wake_loop()

        logger.info(
            "Schedule registered",
            schedule_name=name,
            cron_expression=cron.expression,
            timezone=tz_name,
            next_run=schedule.next_run.isoformat(),
        )
        return schedule

    def _enqueue_action(
        self,
        job_name: str,
        payload: Any,
        priority: int | None,
        max_retries: int | None,
    ) -> ScheduleAction:
        async def enqueue() -> None:
            await self.queue.add(
                job_name,
                copy.deepcopy(payload) if payload is not None else {},
                priority=priority,
                max_retries=max_retries,
            )

        return enqueue

    async def load_schedules(self) -> int:
        """Restore persisted job-backed schedules. Returns how many were loaded."""
        if self.store is None:
            return 0

        loaded = 0
        for schedule in await self.store.load_all():
            if schedule.name in self._schedules:
                logger.warning("Persisted schedule shadowed", schedule_name=schedule.name)
                continue
            if not schedule.is_job_backed:
                continue

            try:
                cron = CronExpression.parse(schedule.cron_expression)
                zone = resolve_timezone(schedule.timezone)
            except (InvalidCronExpression, ValidationError) as e:
                logger.warning(
                    "Skipping invalid persisted schedule",
                    schedule_name=schedule.name,
                    error=e.message,
                )
                continue

            schedule.action = self._enqueue_action(
                schedule.job_name,
                schedule.job_payload,
                schedule.job_priority,
                schedule.job_max_retries,
            )
            if schedule.next_run is None:
                schedule.next_run = cron.next_after(self.clock(), zone)
                await self.store.save(schedule)

            self._schedules[schedule.name] = schedule
            self._crons[schedule.name] = cron
            loaded += 1

        if loaded:
            logger.info("Loaded persisted schedules", count=loaded)
            self._wake_loop()
        return loaded

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def get_schedules(self) -> list[Schedule]:
        return [self._schedules[name] for name in sorted(self._schedules)]

    def get_schedule(self, name: str) -> Schedule | None:
        return self._schedules.get(name)

    def referenced_job_names(self) -> set[str]:
        """Job names enqueued by job-backed schedules."""
        return {s.job_name for s in self._schedules.values() if s.job_name is not None}

    def _require(self, name: str) -> Schedule:
        schedule = self._schedules.get(name)
        if schedule is None:
            raise NotFoundError(f"Schedule not found: {name}", {"name": name})
        return schedule

    def _forget(self, name: str) -> None:
        self._schedules.pop(name, None)
        self._crons.pop(name, None)

    async def _persist(self, schedule: Schedule) -> None:
        if self.store is not None and schedule.is_job_backed:
            await self.store.save(schedule)

    async def unschedule(self, name: str) -> None:
        schedule = self._require(name)
        self._forget(name)
        if self.store is not None and schedule.is_job_backed:
            await self.store.delete(name)
        logger.info("Schedule removed", schedule_name=name)

    async def enable(self, name: str) -> Schedule:
        schedule = self._require(name)
        schedule.enabled = True
        if schedule.next_run is None:
            schedule.next_run = self._crons[name].next_after(self.clock(), schedule.timezone)
        await self._persist(schedule)
        self._wake_loop()
        logger.info("Schedule enabled", schedule_name=name)
        return schedule

    async def disable(self, name: str) -> Schedule:
        schedule = self._require(name)
        schedule.enabled = False
        await self._persist(schedule)
        logger.info("Schedule disabled", schedule_name=name)
        return schedule

    async def trigger(self, name: str) -> Schedule:
        """
        Run a schedule's action now, regardless of `enabled`.

        Failures are recorded in `last_error` rather than raised, and
        `next_run` is left untouched.
        """
        schedule = self._require(name)
        await self._run(schedule, self.clock())
        if self._is_current(schedule):
            await self._persist(schedule)
        return schedule

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _run(self, schedule: Schedule, now: datetime) -> bool:
        schedule.last_run = now
        try:
            with schedule_context(schedule.name):
                result = schedule.action()
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            schedule.last_error = str(e) or e.__class__.__name__
            logger.error(
                "Schedule failed", schedule_name=schedule.name, error=schedule.last_error
            )
            return False

        schedule.run_count += 1
        schedule.last_error = None
        logger.info(
            "Schedule ran", schedule_name=schedule.name, run_count=schedule.run_count
        )
        return True

    def _is_current(self, schedule: Schedule) -> bool:
        # False once the schedule was removed or replaced while its action ran
        return self._schedules.get(schedule.name) is schedule

    async def _fire(self, schedule: Schedule, now: datetime) -> None:
        await self._run(schedule, now)
        if not self._is_current(schedule):
            return
        # Next run is computed from now even after a failure, so a slow or
        # missed window is skipped rather than replayed
        schedule.next_run = self._crons[schedule.name].next_after(now, schedule.timezone)
        try:
            await self._persist(schedule)
        except Exception:
            logger.exception("Failed to persist schedule state", schedule_name=schedule.name)

    async def tick(self) -> list[str]:
        """Fire every enabled schedule that is due. Returns the names fired."""
        now = self.clock()
        due = [
            s
            for s in self._schedules.values()
            if s.enabled and s.next_run is not None and s.next_run <= now
        ]
        if due:
            await asyncio.gather(*(self._fire(s, now) for s in due))
        return [s.name for s in due]

    def seconds_until_next_tick(self) -> float:
        """Sleep until the earliest enabled next_run, capped by the check interval."""
        upcoming = [
            s.next_run
            for s in self._schedules.values()
            if s.enabled and s.next_run is not None
        ]
        if not upcoming:
            return self.check_interval_s

        until_next = (min(upcoming) - self.clock()).total_seconds()
        return max(min(until_next, self.check_interval_s), MIN_SLEEP_S)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _wake_loop(self) -> None:
        if self._wake is not None:
            self._wake.set()

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Scheduler started", schedules=len(self._schedules))

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._wake_loop()
        if self._task is not None:
            await self._task
            self._task = None
        self._wake = None
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        while self.running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")

            if not self.running:
                break

            delay = self.seconds_until_next_tick()
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except TimeoutError:
                pass
