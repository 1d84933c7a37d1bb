import asyncio
from datetime import UTC, datetime

from jobengine.v1.jobs.queue import JobQueue
from jobengine.v1.jobs.store import JobStore
from jobengine.v1.scheduler.models import Schedule
from jobengine.v1.scheduler.persistence import ScheduleStore, schedule_key
from jobengine.v1.scheduler.service import JobScheduler


def restart(kv, settings, clock) -> JobScheduler:
    """A fresh queue and scheduler on the same store, as after a process restart."""
    queue = JobQueue(JobStore(kv, clock), settings)
    return JobScheduler(queue, settings, store=ScheduleStore(kv), clock=clock)


async def test_job_schedule_is_persisted(scheduler, kv):
    await scheduler.schedule_job(
        "hourly-sync", "0 * * * *", "sync-accounts", {"full": False}, max_retries=1
    )

    record = (await kv.get(schedule_key("hourly-sync"))).value

    assert record["job_name"] == "sync-accounts"
    assert record["job_payload"] == {"full": False}
    assert record["job_max_retries"] == 1
    assert record["next_run"] == "2025-01-01T13:00:00+00:00"


async def test_plain_callable_schedule_is_not_persisted(scheduler, kv):
    scheduler.schedule("in-memory", "0 * * * *", lambda: None)

    assert await kv.get(schedule_key("in-memory")) is None


async def test_schedules_survive_restart(scheduler, kv, settings, clock):
    await scheduler.schedule_job("hourly-sync", "0 * * * *", "sync-accounts", {"full": True})
    await scheduler.disable("hourly-sync")

    restored = restart(kv, settings, clock)
    loaded = await restored.load_schedules()

    schedule = restored.get_schedule("hourly-sync")
    assert loaded == 1
    assert schedule.enabled is False
    assert schedule.next_run == datetime(2025, 1, 1, 13, 0, tzinfo=UTC)
    assert schedule.action is not None


async def test_restored_schedule_enqueues_jobs(scheduler, kv, settings, clock):
    await scheduler.schedule_job("hourly-sync", "0 * * * *", "sync-accounts", {"full": True})

    restored = restart(kv, settings, clock)
    await restored.load_schedules()
    clock.advance(hours=1)
    await restored.tick()

    jobs = await restored.queue.list_jobs(name="sync-accounts")
    assert [j.payload for j in jobs] == [{"full": True}]
    assert (await kv.get(schedule_key("hourly-sync"))).value["run_count"] == 1


async def test_overdue_schedule_fires_once_after_restart(scheduler, kv, settings, clock):
    await scheduler.schedule_job("hourly-sync", "0 * * * *", "sync-accounts")

    clock.advance(hours=5)
    restored = restart(kv, settings, clock)
    await restored.load_schedules()

    assert await restored.tick() == ["hourly-sync"]
    assert await restored.tick() == []
    assert len(await restored.queue.list_jobs(name="sync-accounts")) == 1


async def test_unschedule_deletes_record(scheduler, kv):
    await scheduler.schedule_job("hourly-sync", "0 * * * *", "sync-accounts")

    await scheduler.unschedule("hourly-sync")

    assert await kv.get(schedule_key("hourly-sync")) is None


async def test_load_skips_invalid_and_shadowed_records(scheduler, kv, settings, clock):
    store = ScheduleStore(kv)
    await store.save(Schedule(name="broken", cron_expression="bogus", job_name="x"))
    await store.save(Schedule(name="taken", cron_expression="0 * * * *", job_name="x"))
    await kv.set(schedule_key("garbage"), {"unexpected": True})

    scheduler.schedule("taken", "* * * * *", lambda: None)
    loaded = await scheduler.load_schedules()

    assert loaded == 0
    assert scheduler.get_schedule("broken") is None
    assert scheduler.get_schedule("taken").cron_expression == "* * * * *"


async def test_missing_next_run_is_recomputed_on_load(kv, settings, clock):
    await ScheduleStore(kv).save(
        Schedule(name="daily", cron_expression="0 0 * * *", job_name="report")
    )

    restored = restart(kv, settings, clock)
    await restored.load_schedules()

    assert restored.get_schedule("daily").next_run == datetime(2025, 1, 2, 0, 0, tzinfo=UTC)
    stored = await ScheduleStore(kv).get("daily")
    assert stored.next_run == datetime(2025, 1, 2, 0, 0, tzinfo=UTC)


def hold_action(scheduler, name):
    """Swap in an action that blocks until released."""
    started, release = asyncio.Event(), asyncio.Event()

    async def held():
        started.set()
        await release.wait()

    scheduler.get_schedule(name).action = held
    return started, release


async def test_unschedule_during_trigger_stays_deleted(scheduler, kv):
    await scheduler.schedule_job("nightly", "0 3 * * *", "build-report")
    started, release = hold_action(scheduler, "nightly")

    running = asyncio.create_task(scheduler.trigger("nightly"))
    await started.wait()
    await scheduler.unschedule("nightly")
    release.set()
    await running

    assert await ScheduleStore(kv).get("nightly") is None
    assert scheduler.get_schedule("nightly") is None


async def test_unschedule_during_tick_stays_deleted(scheduler, kv, clock):
    await scheduler.schedule_job("hourly-sync", "0 * * * *", "sync-accounts")
    started, release = hold_action(scheduler, "hourly-sync")
    clock.advance(hours=1)

    ticking = asyncio.create_task(scheduler.tick())
    await started.wait()
    await scheduler.unschedule("hourly-sync")
    release.set()

    assert await ticking == ["hourly-sync"]
    assert await ScheduleStore(kv).get("hourly-sync") is None
