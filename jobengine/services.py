"""
Wiring for the queue, scheduler, and their shared store.

`BackgroundServices.create` builds everything from settings; the API
lifespan and the CLI worker both use it, so there is no module-level queue
or scheduler instance.
"""

from collections.abc import Callable
from datetime import datetime

import httpx
from fastapi import Request

from jobengine.config.logging import get_logger
from jobengine.config.settings import Settings
from jobengine.infra.kv import KeyValueStore, open_store
from jobengine.v1.core.exceptions import ConfigurationError
from jobengine.v1.jobs.handlers import register_builtin_handlers
from jobengine.v1.jobs.models import utc_now
from jobengine.v1.jobs.notifications import FanoutNotifier, JobNotifier
from jobengine.v1.jobs.queue import JobQueue
from jobengine.v1.jobs.store import JobStore
from jobengine.v1.scheduler.persistence import ScheduleStore
from jobengine.v1.scheduler.service import JobScheduler

logger = get_logger(__name__)


class BackgroundServices:
    """Queue, scheduler, and store for one process."""

    def __init__(
        self,
        settings: Settings,
        kv: KeyValueStore,
        queue: JobQueue,
        scheduler: JobScheduler,
        notifier: JobNotifier,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.kv = kv
        self.queue = queue
        self.scheduler = scheduler
        self.notifier = notifier
        self.http_client = http_client
        self.started = False
        self._schedules_loaded = False

    @classmethod
    async def create(
        cls,
        settings: Settings,
        notifier: JobNotifier | None = None,
        kv: KeyValueStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "BackgroundServices":
        """Open the store and build the queue and scheduler on top of it."""
        if kv is None:
            kv = await open_store(settings)
        if notifier is None:
            notifier = FanoutNotifier()

        queue = JobQueue(JobStore(kv, clock), settings, notifier=notifier)
        scheduler = JobScheduler(queue, settings, store=ScheduleStore(kv))

        http_client = httpx.AsyncClient()
        register_builtin_handlers(queue, settings, http_client)

        logger.info(
            "Background services created",
            kv_backend=settings.kv_backend.value,
            worker_id=queue.worker_id,
        )
        return cls(settings, kv, queue, scheduler, notifier, http_client)

    async def start(self) -> None:
        """
        Restore schedules, check that every scheduled job has a handler,
        then start the queue and the scheduler.
        """
        if self.started:
            return

        if not self._schedules_loaded:
            await self.scheduler.load_schedules()
            self._schedules_loaded = True

        try:
            self.queue.validate_handlers(self.scheduler.referenced_job_names())
        except ConfigurationError as e:
            if self.settings.strict_handler_validation:
                raise
            logger.warning(
                "Schedules reference jobs without handlers",
                missing_handlers=e.details.get("missing_handlers", []),
            )

        # Handlers are fixed once processing starts outside development
        if self.settings.environment != "development":
            self.queue.registry.freeze()

        await self.queue.start()
        await self.scheduler.start()
        self.started = True

    async def stop(self, drain_timeout_s: float | None = None) -> None:
        if not self.started:
            return
        await self.scheduler.stop()
        await self.queue.stop(drain_timeout_s=drain_timeout_s)
        self.started = False

    async def close(self, drain_timeout_s: float | None = None) -> None:
        """Stop everything and release the store and HTTP client."""
        await self.stop(drain_timeout_s=drain_timeout_s)
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.kv.close()
        logger.info("Background services closed")


def get_services(request: Request) -> BackgroundServices:
    """Dependency returning the services attached by the app lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ConfigurationError("Background services are not configured")
    return services


def get_queue(request: Request) -> JobQueue:
    return get_services(request).queue


def get_scheduler(request: Request) -> JobScheduler:
    return get_services(request).scheduler
