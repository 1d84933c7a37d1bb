"""
Job queue orchestrator: handler registry, poll loop, and retry policy.

One cooperative loop per process promotes due jobs, claims up to the free
concurrency budget, and dispatches each claimed job as its own task. Safety
across processes comes from the compare-and-commit protocol in `JobStore`;
the in-flight set here is process-local.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from jobengine.config.logging import get_logger, job_context
from jobengine.config.settings import Settings
from jobengine.v1.core.exceptions import (
    ConfigurationError,
    HandlerError,
    HandlerTimeoutError,
    ValidationError,
)
from jobengine.v1.core.registries import JobRegistry
from jobengine.v1.jobs.models import Job, JobStatus
from jobengine.v1.jobs.notifications import JobNotifier
from jobengine.v1.jobs.schemas import JobCreate, JobStatsResponse
from jobengine.v1.jobs.store import ClaimedJob, JobStore

logger = get_logger(__name__)

MIN_POLL_INTERVAL_MS = 100


def compute_backoff_ms(attempts: int, base_ms: int, cap_ms: int) -> int:
    """Exponential backoff: base * 2^attempts, capped."""
    return min(base_ms * (2**attempts), cap_ms)


def _error_details(error: PydanticValidationError) -> dict[str, Any]:
    return {
        "errors": [
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
            for err in error.errors()
        ]
    }


class JobQueue:
    """Durable job queue with bounded concurrent processing."""

    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        notifier: JobNotifier | None = None,
        worker_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.settings = settings
        self.notifier = notifier
        self.clock = clock or store.clock
        self.worker_id = (
            worker_id
            or settings.worker_id
            or f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        )
        self.registry = JobRegistry()
        self.max_concurrency = settings.job_concurrency
        self.poll_interval_ms = settings.job_poll_interval_ms
        self.running = False
        self.active_jobs: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_max_concurrency(self, max_concurrency: int) -> None:
        """Set maximum concurrent job processing."""
        if max_concurrency < 1:
            raise ValidationError("Max concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    def set_poll_interval(self, interval_ms: int) -> None:
        """Set polling interval in milliseconds."""
        if interval_ms < MIN_POLL_INTERVAL_MS:
            raise ValidationError(
                f"Poll interval must be at least {MIN_POLL_INTERVAL_MS}ms"
            )
        self.poll_interval_ms = interval_ms

    def process(self, name: str, handler: Any) -> None:
        """Register the handler for jobs named `name`, replacing any previous one."""
        if self.registry.has(name):
            logger.warning("Replacing job handler", job_name=name)
        self.registry.register(name, handler)
        logger.info("Job handler registered", job_name=name)

    def validate_handlers(self, names: set[str] | list[str]) -> None:
        """Raise ConfigurationError if any of `names` has no registered handler."""
        missing = sorted(set(names) - set(self.registry.list()))
        if missing:
            raise ConfigurationError(
                f"No handler registered for job(s): {', '.join(missing)}",
                {"missing_handlers": missing},
            )

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        payload: Any = None,
        *,
        priority: int | None = None,
        max_retries: int | None = None,
        delay_ms: int | None = None,
        scheduled_for: datetime | None = None,
        job_id: str | None = None,
        timeout_s: float | None = None,
    ) -> str:
        """
        Add a job to the queue.

        Args:
            name: Job name, selects the handler
            payload: JSON-compatible job data
            priority: Higher runs first (defaults to settings)
            max_retries: Retries allowed after the first attempt
            delay_ms: Delay before the first attempt
            scheduled_for: Absolute earliest run time (exclusive with delay_ms)
            job_id: Caller-chosen ID; an existing job with this ID is kept
            timeout_s: Handler deadline overriding the queue default

        Returns:
            The job ID
        """
        try:
            submission = JobCreate(
                name=name,
                payload=payload if payload is not None else {},
                priority=(
                    priority if priority is not None else self.settings.job_default_priority
                ),
                max_retries=(
                    max_retries
                    if max_retries is not None
                    else self.settings.job_default_max_retries
                ),
                delay_ms=delay_ms,
                scheduled_for=scheduled_for,
                job_id=job_id,
                timeout_s=timeout_s,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid job submission", _error_details(e)) from e

        now = self.clock()
        if submission.scheduled_for is not None:
            due = submission.scheduled_for.astimezone(UTC)
        elif submission.delay_ms:
            due = now + timedelta(milliseconds=submission.delay_ms)
        else:
            due = now

        job = Job(
            id=submission.job_id or str(uuid4()),
            name=submission.name,
            payload=submission.payload,
            priority=submission.priority,
            max_retries=submission.max_retries,
            created_at=now,
            scheduled_for=due,
            timeout_s=submission.timeout_s,
        )
        try:
            job.to_record()
        except PydanticSerializationError as e:
            raise ValidationError(f"Job payload is not JSON-serializable: {e}") from e

        stored, created = await self.store.create(job)
        if created:
            logger.info(
                "Job enqueued",
                job_id=job.id,
                job_name=job.name,
                priority=job.priority,
                scheduled_for=due.isoformat(),
            )
        else:
            logger.info("Job deduplicated", job_id=stored.id, job_name=stored.name)
        return stored.id

    async def get_job(self, job_id: str) -> Job | None:
        """Get job by ID."""
        return await self.store.get(job_id)

    async def list_jobs(
        self,
        status: JobStatus | str | None = None,
        name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        """List jobs, optionally filtered by status and name."""
        if not 1 <= limit <= self.settings.job_list_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.job_list_max_limit}"
            )
        if offset < 0:
            raise ValidationError("offset must not be negative")
        if status is not None and not isinstance(status, JobStatus):
            try:
                status = JobStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown job status: {status}") from None
        return await self.store.list_jobs(status=status, name=name, limit=limit, offset=offset)

    async def get_stats(self) -> JobStatsResponse:
        """Count jobs by status."""
        return await self.store.get_stats()

    async def retry(self, job_id: str) -> Job:
        """Re-enqueue a failed job with a fresh retry budget."""
        job = await self.store.requeue_failed(job_id)
        logger.info("Job retried", job_id=job_id, job_name=job.name)
        await self._notify(job)
        return job

    async def delete(self, job_id: str) -> None:
        """Delete a job and its queue rows."""
        await self.store.delete(job_id)
        logger.info("Job deleted", job_id=job_id)

    async def cleanup(self, older_than: datetime | None = None) -> int:
        """Delete completed and failed jobs that finished before the cutoff."""
        cutoff = older_than or (
            self.clock() - timedelta(days=self.settings.job_cleanup_after_days)
        )
        deleted = await self.store.cleanup(cutoff)
        if deleted > 0:
            logger.info(
                "Cleaned up old jobs", deleted_count=deleted, cutoff=cutoff.isoformat()
            )
        return deleted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the poll loop in the background."""
        if self.running:
            return

        if not self.registry.list():
            logger.warning("Job queue started without any handlers", worker_id=self.worker_id)

        self.running = True
        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "Starting job queue",
            worker_id=self.worker_id,
            concurrency=self.max_concurrency,
            poll_interval_ms=self.poll_interval_ms,
            handlers=self.registry.list(),
        )

    async def stop(self, drain_timeout_s: float | None = None) -> None:
        """
        Stop scheduling poll ticks.

        In-flight handlers are never cancelled; with `drain_timeout_s` this
        waits up to that long for them to finish.
        """
        if not self.running:
            return

        logger.info("Stopping job queue", worker_id=self.worker_id)
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None

        if drain_timeout_s and self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=drain_timeout_s)
            if pending:
                logger.warning(
                    "Job queue stopped with active jobs",
                    worker_id=self.worker_id,
                    active_jobs=len(pending),
                )

    async def wait_idle(self) -> None:
        """Wait until every dispatched job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Error polling queue", worker_id=self.worker_id)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_ms / 1000
                )
            except TimeoutError:
                pass

    async def poll_once(self) -> list[Job]:
        """
        Run one poll tick: promote due jobs, then claim and dispatch up to the
        free concurrency budget. Returns the jobs dispatched.
        """
        promoted = await self.store.promote_due()
        if promoted:
            logger.debug("Promoted scheduled jobs", count=promoted)

        available_slots = self.max_concurrency - len(self.active_jobs)
        claimed: list[ClaimedJob] = []
        # Sequential within the process so one candidate is never claimed twice
        for _ in range(max(0, available_slots)):
            item = await self.store.claim_next(self.worker_id, accepts=self.registry.has)
            if item is None:
                break
            self.active_jobs.add(item.job.id)
            claimed.append(item)

        for item in claimed:
            task = asyncio.create_task(self._process_job(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if claimed:
            logger.info(
                "Claimed jobs",
                worker_id=self.worker_id,
                job_count=len(claimed),
                job_ids=[item.job.id for item in claimed],
            )
        return [item.job for item in claimed]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _process_job(self, claimed: ClaimedJob) -> None:
        """Run one claimed job and record its outcome."""
        job = claimed.job

        with job_context(job, self.worker_id):
            try:
                logger.info("Processing job started")
                await self._notify(job)

                try:
                    result = await self._run_handler(job)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    await self._handle_failure(claimed, e, logger)
                else:
                    await self._handle_success(claimed, result, logger)

            except asyncio.CancelledError:
                logger.warning("Job processing cancelled")
                raise
            except Exception:
                logger.exception("Failed to record job outcome")
            finally:
                self.active_jobs.discard(job.id)

    async def _run_handler(self, job: Job) -> Any:
        try:
            handler = self.registry.get(job.name)
        except KeyError:
            raise HandlerError(job.id, f"No handler registered for job: {job.name}") from None

        timeout = job.timeout_s or self.settings.job_handler_timeout_s
        if timeout is None:
            return await handler.handle(job)

        try:
            return await asyncio.wait_for(handler.handle(job), timeout)
        except TimeoutError as e:
            raise HandlerTimeoutError(
                job.id, f"Job exceeded its deadline of {timeout}s"
            ) from e

    async def _handle_success(self, claimed: ClaimedJob, result: Any, job_logger) -> None:
        completed = claimed.job.model_copy(
            update={
                "status": JobStatus.COMPLETED,
                "completed_at": self.clock(),
                "result": result,
                "error": None,
            }
        )
        try:
            completed.to_record()
        except PydanticSerializationError as e:
            await self._handle_failure(
                claimed, HandlerError(completed.id, f"Job result is not JSON-serializable: {e}"), job_logger
            )
            return

        if not await self.store.finalize(completed, claimed.versionstamp):
            job_logger.warning("Job changed while running, outcome discarded")
            return

        job_logger.info("Processing job completed successfully")
        await self._notify(completed)

    async def _handle_failure(self, claimed: ClaimedJob, error: Exception, job_logger) -> None:
        job = claimed.job
        message = str(error) or error.__class__.__name__
        now = self.clock()

        if job.can_retry():
            delay_ms = compute_backoff_ms(
                job.attempts,
                self.settings.job_backoff_base_ms,
                self.settings.job_max_backoff_ms,
            )
            updated = job.model_copy(
                update={
                    "status": JobStatus.RETRYING,
                    "error": message,
                    "scheduled_for": now + timedelta(milliseconds=delay_ms),
                }
            )
            saved = await self.store.schedule_retry(updated, claimed.versionstamp)
            if saved:
                job_logger.warning(
                    "Job failed, retry scheduled",
                    error=message,
                    delay_ms=delay_ms,
                    next_run_at=updated.scheduled_for.isoformat(),
                )
        else:
            updated = job.model_copy(
                update={
                    "status": JobStatus.FAILED,
                    "error": message,
                    "completed_at": now,
                }
            )
            saved = await self.store.finalize(updated, claimed.versionstamp)
            if saved:
                job_logger.error(
                    "Job moved to dead letter", error=message, exc_info=error
                )

        if not saved:
            job_logger.warning("Job changed while running, outcome discarded")
            return
        await self._notify(updated)

    async def _notify(self, job: Job) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(job)
        except Exception as e:
            logger.debug(
                "Job notification failed (non-critical)", job_id=job.id, error=str(e)
            )
