"""
Durable job storage with ready and scheduled queue indexes.

Every job lives at ("jobs", id) with a full copy at ("jobs_by_name", name,
id). A pending or retrying job additionally has exactly one queue row: a
ready row when it is due, a scheduled row when it is due later. Rows are
moved and consumed with compare-and-commit transactions only, so any number
of processes can share one store without locks.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from jobengine.infra.kv import Entry, KeyValueStore
from jobengine.v1.core.exceptions import ConflictError, NotFoundError, StoreError
from jobengine.v1.jobs.models import (
    JOBS,
    JOBS_BY_NAME,
    QUEUE,
    READY,
    SCHEDULED,
    Job,
    JobStatus,
    job_key,
    name_index_key,
    queue_key,
    ready_key,
    scheduled_key,
    to_millis,
    utc_now,
)
from jobengine.v1.jobs.schemas import JobStatsResponse

logger = logging.getLogger(__name__)

# Attempts at a guarded delete before giving up on a job that keeps changing
MAX_DELETE_ATTEMPTS = 3


@dataclass(frozen=True)
class ClaimedJob:
    """A job exclusively owned by this worker, with the versionstamp it was claimed at."""

    job: Job
    versionstamp: str


class JobStore:
    """Persistence and queue index maintenance for jobs."""

    def __init__(self, kv: KeyValueStore, clock: Callable[[], datetime] = utc_now):
        self.kv = kv
        self.clock = clock

    def _write_job(self, op, job: Job) -> None:
        record = job.to_record()
        op.set(job_key(job.id), record)
        op.set(name_index_key(job.name, job.id), record)

    async def get(self, job_id: str) -> Job | None:
        entry = await self.kv.get(job_key(job_id))
        return Job.from_record(entry.value) if entry else None

    async def create(self, job: Job) -> tuple[Job, bool]:
        """
        Persist a new job with its queue row in one commit.

        Returns the stored job and whether it was created; an existing job
        with the same ID is returned unchanged.
        """
        op = self.kv.atomic().check(job_key(job.id), None)
        self._write_job(op, job)
        op.set(queue_key(job, self.clock()), job.id)
        result = await op.commit()
        if result.ok:
            return job, True

        existing = await self.get(job.id)
        if existing is None:
            raise StoreError(f"Job {job.id} could not be created")
        return existing, False

    async def _prune(self, row: Entry) -> None:
        """Remove a queue row that no longer points at a claimable job."""
        await self.kv.atomic().check(row).delete(row.key).commit()
        logger.debug("Pruned stale queue row", extra={"key": repr(row.key)})

    async def claim_next(
        self, worker_id: str, accepts: Callable[[str], bool] | None = None
    ) -> ClaimedJob | None:
        """
        Claim the first eligible job in ready-queue order.

        Candidates that are stale are pruned, candidates lost to a racing
        worker are skipped, and candidates whose name `accepts` rejects are
        left for other workers.
        """
        async for row in self.kv.list(prefix=(QUEUE, READY)):
            try:
                claimed = await self._try_claim(row, worker_id, accepts)
            except StoreError as e:
                logger.warning(
                    "Store error while claiming, skipping candidate",
                    extra={"job_id": row.value, "error": str(e)},
                )
                continue
            if claimed is not None:
                return claimed
        return None

    async def _try_claim(
        self, row: Entry, worker_id: str, accepts: Callable[[str], bool] | None
    ) -> ClaimedJob | None:
        entry = await self.kv.get(job_key(row.value))
        job = Job.from_record(entry.value) if entry else None
        if job is None or not job.is_claimable() or tuple(row.key) != ready_key(job):
            await self._prune(row)
            return None

        if accepts is not None and not accepts(job.name):
            return None

        claimed = job.model_copy(
            update={
                "status": JobStatus.RUNNING,
                "started_at": self.clock(),
                "attempts": job.attempts + 1,
                "claimed_by": worker_id,
            }
        )
        op = self.kv.atomic().check(entry).check(row).delete(row.key)
        self._write_job(op, claimed)
        result = await op.commit()
        if not result.ok:
            logger.debug("Lost claim race", extra={"job_id": job.id})
            return None
        return ClaimedJob(claimed, result.versionstamp)

    async def promote_due(self, now: datetime | None = None) -> int:
        """Move scheduled rows that are due into the ready queue."""
        now = now or self.clock()
        promoted = 0
        end = (QUEUE, SCHEDULED, to_millis(now) + 1)
        async for row in self.kv.list(prefix=(QUEUE, SCHEDULED), end=end):
            try:
                if await self._try_promote(row):
                    promoted += 1
            except StoreError as e:
                logger.warning(
                    "Store error while promoting, skipping candidate",
                    extra={"job_id": row.value, "error": str(e)},
                )
        return promoted

    async def _try_promote(self, row: Entry) -> bool:
        entry = await self.kv.get(job_key(row.value))
        job = Job.from_record(entry.value) if entry else None
        if job is None or not job.is_claimable() or tuple(row.key) != scheduled_key(job):
            await self._prune(row)
            return False

        result = await (
            self.kv.atomic()
            .check(entry)
            .check(row)
            .delete(row.key)
            .set(ready_key(job), job.id)
            .commit()
        )
        return result.ok

    async def finalize(self, job: Job, versionstamp: str) -> bool:
        """
        Write a completed or failed job together with its name mirror.

        Returns False when the job changed since it was claimed (for example
        it was deleted), in which case nothing is written.
        """
        op = self.kv.atomic().check(job_key(job.id), versionstamp)
        self._write_job(op, job)
        result = await op.commit()
        return result.ok

    async def schedule_retry(self, job: Job, versionstamp: str) -> bool:
        """Write a retrying job and its scheduled-queue row in one commit."""
        op = self.kv.atomic().check(job_key(job.id), versionstamp)
        self._write_job(op, job)
        op.set(scheduled_key(job), job.id)
        result = await op.commit()
        return result.ok

    async def requeue_failed(self, job_id: str) -> Job:
        """Reset a failed job to pending and give it a queue row again."""
        entry = await self.kv.get(job_key(job_id))
        if entry is None:
            raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})

        job = Job.from_record(entry.value)
        if job.status != JobStatus.FAILED:
            raise ConflictError(
                f"Job {job_id} is {job.status.value}, only failed jobs can be retried",
                {"job_id": job_id, "status": job.status.value},
            )

        reset = job.model_copy(
            update={
                "status": JobStatus.PENDING,
                "attempts": 0,
                "error": None,
                "started_at": None,
                "completed_at": None,
                "claimed_by": None,
            }
        )
        op = self.kv.atomic().check(entry)
        self._write_job(op, reset)
        op.set(queue_key(reset, self.clock()), reset.id)
        result = await op.commit()
        if not result.ok:
            raise ConflictError(
                f"Job {job_id} changed while being retried", {"job_id": job_id}
            )
        return reset

    async def _delete_entry(self, entry: Entry) -> bool:
        job = Job.from_record(entry.value)
        result = await (
            self.kv.atomic()
            .check(entry)
            .delete(job_key(job.id))
            .delete(name_index_key(job.name, job.id))
            .delete(ready_key(job))
            .delete(scheduled_key(job))
            .commit()
        )
        return result.ok

    async def delete(self, job_id: str) -> None:
        """Delete a job, its name mirror, and any queue row."""
        for _ in range(MAX_DELETE_ATTEMPTS):
            entry = await self.kv.get(job_key(job_id))
            if entry is None:
                raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})
            if await self._delete_entry(entry):
                return
        raise ConflictError(f"Job {job_id} kept changing during delete", {"job_id": job_id})

    async def cleanup(self, before: datetime) -> int:
        """Delete completed and failed jobs that finished before `before`."""
        deleted = 0
        async for entry in self.kv.list(prefix=(JOBS,)):
            job = Job.from_record(entry.value)
            if not job.is_terminal() or job.completed_at is None:
                continue
            if job.completed_at >= before:
                continue
            if await self._delete_entry(entry):
                deleted += 1
        return deleted

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        prefix = (JOBS_BY_NAME, name) if name else (JOBS,)
        jobs: list[Job] = []
        matched = 0
        async for entry in self.kv.list(prefix=prefix):
            job = Job.from_record(entry.value)
            if status is not None and job.status != status:
                continue
            if matched >= offset:
                jobs.append(job)
                if len(jobs) >= limit:
                    break
            matched += 1
        return jobs

    async def get_stats(self) -> JobStatsResponse:
        stats = JobStatsResponse()
        async for entry in self.kv.list(prefix=(JOBS,)):
            job = Job.from_record(entry.value)
            stats.total += 1
            setattr(stats, job.status.value, getattr(stats, job.status.value) + 1)
        return stats
