"""
Best-effort fan-out of job status transitions.

Listeners are informational: the queue never waits on their success, and a
failing listener is logged and ignored.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from jobengine.config.logging import get_logger
from jobengine.v1.jobs.models import Job

logger = get_logger(__name__)

JobListener = Callable[[Job], Awaitable[None]]


class JobNotifier(Protocol):
    """Sink invoked on every job status transition."""

    async def notify(self, job: Job) -> None:
        ...


class FanoutNotifier:
    """Delivers each transition to every subscribed listener."""

    def __init__(self):
        self._listeners: list[JobListener] = []

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def notify(self, job: Job) -> None:
        for listener in list(self._listeners):
            try:
                await listener(job)
            except Exception as e:
                logger.debug(
                    "Job listener failed (non-critical)",
                    job_id=job.id,
                    status=job.status.value,
                    error=str(e),
                )
