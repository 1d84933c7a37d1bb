import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from jobengine.v1.core.exceptions import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from jobengine.v1.jobs.models import JobStatus
from jobengine.v1.jobs.notifications import FanoutNotifier
from jobengine.v1.jobs.queue import compute_backoff_ms


async def run_tick(queue):
    """One poll tick, then wait for every dispatched handler."""
    dispatched = await queue.poll_once()
    await queue.wait_idle()
    return dispatched


async def test_job_runs_to_completion(queue, clock):
    seen = []

    async def send_email(job):
        seen.append(job.payload)
        return {"sent": True}

    queue.process("send-email", send_email)
    job_id = await queue.add("send-email", {"to": "a@example.com"})

    await run_tick(queue)

    job = await queue.get_job(job_id)
    assert seen == [{"to": "a@example.com"}]
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"sent": True}
    assert job.attempts == 1
    assert job.completed_at == clock()
    assert job.claimed_by == "worker-1"


async def test_handler_object_with_handle_method(queue):
    class ReportHandler:
        async def handle(self, job):
            return job.payload["n"] * 2

    queue.process("report", ReportHandler())
    job_id = await queue.add("report", {"n": 21})

    await run_tick(queue)

    assert (await queue.get_job(job_id)).result == 42


async def test_process_replaces_existing_handler(queue):
    async def first(job):
        return "first"

    async def second(job):
        return "second"

    queue.process("report", first)
    queue.process("report", second)
    job_id = await queue.add("report", {})

    await run_tick(queue)

    assert queue.registry.list() == ["report"]
    assert (await queue.get_job(job_id)).result == "second"


async def test_failed_attempt_is_retried_until_success(queue, clock):
    calls = 0

    async def flaky(job):
        nonlocal calls
        calls += 1
        if calls < 3:
            raise RuntimeError(f"failure {calls}")
        return "ok"

    queue.process("flaky", flaky)
    job_id = await queue.add("flaky", {}, max_retries=3)

    await run_tick(queue)
    job = await queue.get_job(job_id)
    assert job.status == JobStatus.RETRYING
    assert job.error == "failure 1"
    assert job.scheduled_for == clock() + timedelta(milliseconds=2000)

    for _ in range(2):
        clock.advance(minutes=5)
        await run_tick(queue)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 3
    assert job.result == "ok"
    assert job.error is None


async def test_retries_exhausted_moves_job_to_failed(queue, clock):
    async def broken(job):
        raise ValueError("always broken")

    queue.process("broken", broken)
    job_id = await queue.add("broken", {}, max_retries=2)

    for _ in range(4):
        await run_tick(queue)
        clock.advance(minutes=5)

    job = await queue.get_job(job_id)
    stats = await queue.get_stats()
    assert job.status == JobStatus.FAILED
    assert job.attempts == 3
    assert job.error == "always broken"
    assert job.completed_at is not None
    assert (stats.failed, stats.pending, stats.retrying) == (1, 0, 0)


async def test_zero_retries_fails_after_first_attempt(queue):
    async def broken(job):
        raise RuntimeError("nope")

    queue.process("broken", broken)
    job_id = await queue.add("broken", {}, max_retries=0)

    await run_tick(queue)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 1


async def test_retry_delays_grow_exponentially(queue, clock):
    async def broken(job):
        raise RuntimeError("nope")

    queue.process("broken", broken)
    job_id = await queue.add("broken", {}, max_retries=3)

    delays = []
    for _ in range(3):
        await run_tick(queue)
        job = await queue.get_job(job_id)
        delays.append((job.scheduled_for - clock()).total_seconds() * 1000)
        clock.advance(minutes=5)

    assert delays == [2000, 4000, 8000]


def test_compute_backoff_is_capped_and_monotonic():
    delays = [compute_backoff_ms(n, 1000, 60000) for n in range(1, 12)]

    assert delays[:3] == [2000, 4000, 8000]
    assert max(delays) == 60000
    assert delays == sorted(delays)


async def test_delayed_job_waits_until_due(queue, clock):
    queue.process("later", lambda job: asyncio.sleep(0))
    job_id = await queue.add("later", {}, delay_ms=5000)

    assert await run_tick(queue) == []

    clock.advance(seconds=5)
    dispatched = await run_tick(queue)

    assert [j.id for j in dispatched] == [job_id]


async def test_scheduled_for_absolute_time(queue, clock):
    queue.process("later", lambda job: asyncio.sleep(0))
    job_id = await queue.add("later", {}, scheduled_for=clock() + timedelta(hours=1))

    assert (await queue.get_job(job_id)).status == JobStatus.PENDING
    assert await run_tick(queue) == []

    clock.advance(hours=1)
    assert [j.id for j in await run_tick(queue)] == [job_id]


async def test_higher_priority_dispatched_first(queue):
    async def noop(job):
        return None

    queue.process("work", noop)
    queue.set_max_concurrency(1)
    await queue.add("work", {"n": 1}, priority=1)
    high = await queue.add("work", {"n": 2}, priority=10)

    dispatched = await run_tick(queue)

    assert [j.id for j in dispatched] == [high]


async def test_concurrency_limit_respected(queue):
    release = asyncio.Event()

    async def blocking(job):
        await release.wait()

    queue.process("blocking", blocking)
    queue.set_max_concurrency(2)
    for i in range(5):
        await queue.add("blocking", {"i": i})

    first = await queue.poll_once()
    second = await queue.poll_once()

    assert len(first) == 2
    assert second == []
    assert len(queue.active_jobs) == 2

    release.set()
    await queue.wait_idle()

    assert len(await queue.poll_once()) == 2
    await queue.wait_idle()


async def test_handler_deadline_fails_attempt(queue):
    async def slow(job):
        await asyncio.sleep(10)

    queue.process("slow", slow)
    job_id = await queue.add("slow", {}, max_retries=0, timeout_s=0.05)

    await run_tick(queue)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert "deadline" in job.error


async def test_job_without_handler_stays_pending(queue):
    job_id = await queue.add("unregistered", {})

    assert await run_tick(queue) == []
    assert (await queue.get_job(job_id)).status == JobStatus.PENDING


async def test_invalid_submissions_rejected(queue, clock):
    with pytest.raises(ValidationError):
        await queue.add("", {})
    with pytest.raises(ValidationError):
        await queue.add("x", {}, max_retries=-1)
    with pytest.raises(ValidationError):
        await queue.add("x", {}, delay_ms=10, scheduled_for=clock())
    with pytest.raises(ValidationError):
        await queue.add("x", {}, scheduled_for=datetime(2025, 1, 1))
    with pytest.raises(ValidationError, match="JSON-serializable"):
        await queue.add("x", {"bad": object()})

    assert (await queue.get_stats()).total == 0


async def test_configuration_bounds(queue):
    with pytest.raises(ValidationError):
        queue.set_max_concurrency(0)
    with pytest.raises(ValidationError):
        queue.set_poll_interval(50)

    queue.set_max_concurrency(3)
    queue.set_poll_interval(100)
    assert (queue.max_concurrency, queue.poll_interval_ms) == (3, 100)


async def test_defaults_come_from_settings(queue, settings):
    job_id = await queue.add("x")

    job = await queue.get_job(job_id)
    assert job.priority == settings.job_default_priority
    assert job.max_retries == settings.job_default_max_retries
    assert job.payload == {}


async def test_caller_job_id_deduplicates(queue):
    first = await queue.add("x", {"n": 1}, job_id="fixed")
    second = await queue.add("x", {"n": 2}, job_id="fixed")

    assert first == second == "fixed"
    assert (await queue.get_job("fixed")).payload == {"n": 1}
    assert (await queue.get_stats()).total == 1


async def test_manual_retry_of_failed_job(queue):
    should_fail = True

    async def handler(job):
        if should_fail:
            raise RuntimeError("down")
        return "recovered"

    queue.process("sync", handler)
    job_id = await queue.add("sync", {}, max_retries=0)
    await run_tick(queue)

    should_fail = False
    retried = await queue.retry(job_id)
    assert retried.status == JobStatus.PENDING
    assert retried.attempts == 0

    await run_tick(queue)
    assert (await queue.get_job(job_id)).result == "recovered"


async def test_retry_and_delete_errors(queue):
    job_id = await queue.add("x", {})

    with pytest.raises(ConflictError):
        await queue.retry(job_id)
    with pytest.raises(NotFoundError):
        await queue.retry("missing")

    await queue.delete(job_id)
    assert await queue.get_job(job_id) is None
    with pytest.raises(NotFoundError):
        await queue.delete(job_id)


async def test_cleanup_uses_retention_setting(queue, clock):
    queue.process("x", lambda job: asyncio.sleep(0))
    job_id = await queue.add("x", {})
    await run_tick(queue)

    assert await queue.cleanup() == 0

    clock.advance(days=8)
    assert await queue.cleanup() == 1
    assert await queue.get_job(job_id) is None


async def test_list_jobs_validation(queue):
    with pytest.raises(ValidationError):
        await queue.list_jobs(status="sleeping")
    with pytest.raises(ValidationError):
        await queue.list_jobs(limit=0)
    with pytest.raises(ValidationError):
        await queue.list_jobs(offset=-1)

    await queue.add("x", {})
    assert len(await queue.list_jobs(status="pending")) == 1


async def test_every_transition_is_notified(queue):
    notifier = FanoutNotifier()
    statuses = []

    async def record(job):
        statuses.append(job.status)

    notifier.subscribe(record)
    queue.notifier = notifier
    queue.process("x", lambda job: asyncio.sleep(0))
    await queue.add("x", {})

    await run_tick(queue)

    assert statuses == [JobStatus.RUNNING, JobStatus.COMPLETED]


async def test_failing_notifier_does_not_affect_jobs(queue):
    class BrokenNotifier:
        async def notify(self, job):
            raise ConnectionError("sink down")

    queue.notifier = BrokenNotifier()
    queue.process("x", lambda job: asyncio.sleep(0))
    job_id = await queue.add("x", {})

    await run_tick(queue)

    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED


async def test_validate_handlers(queue):
    queue.process("known", lambda job: asyncio.sleep(0))

    queue.validate_handlers({"known"})
    with pytest.raises(ConfigurationError) as exc_info:
        queue.validate_handlers({"known", "missing-a", "missing-b"})

    assert exc_info.value.details["missing_handlers"] == ["missing-a", "missing-b"]


async def test_poll_loop_processes_jobs(queue):
    queue.process("x", lambda job: asyncio.sleep(0))
    await queue.start()
    job_id = await queue.add("x", {})

    for _ in range(100):
        if (await queue.get_job(job_id)).status == JobStatus.COMPLETED:
            break
        await asyncio.sleep(0.02)

    await queue.stop()
    assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED
    assert queue.running is False


async def test_stop_lets_running_handlers_finish(queue):
    started = asyncio.Event()

    async def slow(job):
        started.set()
        await asyncio.sleep(0.1)
        return "done"

    queue.process("slow", slow)
    await queue.start()
    job_id = await queue.add("slow", {})
    await asyncio.wait_for(started.wait(), timeout=5)

    await queue.stop(drain_timeout_s=5)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == "done"


async def test_scheduled_for_is_normalized_to_utc(queue):
    from zoneinfo import ZoneInfo

    local = datetime(2025, 6, 1, 9, 0, tzinfo=ZoneInfo("America/New_York"))
    job_id = await queue.add("x", {}, scheduled_for=local)

    job = await queue.get_job(job_id)
    assert job.scheduled_for == datetime(2025, 6, 1, 13, 0, tzinfo=UTC)


async def test_claims_follow_priority_order(queue):
    order = []

    async def record(job):
        order.append(job.priority)

    queue.process("work", record)
    queue.set_max_concurrency(1)
    for priority in (1, 5, 10):
        await queue.add("work", {}, priority=priority)

    for _ in range(3):
        await run_tick(queue)

    assert order == [10, 5, 1]


async def test_send_email_end_to_end(queue):
    async def noop(job):
        return None

    queue.process("send-email", noop)
    job_id = await queue.add("send-email", {"to": "a@b.com"}, priority=5, max_retries=1)
    assert (await queue.get_job(job_id)).status == JobStatus.PENDING

    await run_tick(queue)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at is not None
