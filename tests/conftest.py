from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from jobengine.config.settings import KVBackend, Settings
from jobengine.infra.database import Database
from jobengine.infra.kv import KeyValueStore, MemoryKeyValueStore
from jobengine.infra.kv.sql import SqlKeyValueStore
from jobengine.main import create_app
from jobengine.v1.jobs.queue import JobQueue
from jobengine.v1.jobs.store import JobStore
from jobengine.v1.scheduler.persistence import ScheduleStore
from jobengine.v1.scheduler.service import JobScheduler


class FakeClock:
    """Manually advanced clock injected wherever the code reads the time."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory engine."""
    return Settings(
        _env_file=None,
        environment="test",
        debug=False,
        kv_backend=KVBackend.MEMORY,
        job_concurrency=5,
        job_poll_interval_ms=100,
        job_backoff_base_ms=1000,
        job_max_backoff_ms=60000,
        job_handler_timeout_s=5.0,
        worker_id="worker-1",
        enable_background_services=False,
    )


@pytest.fixture(params=["memory", "sqlite"])
async def kv(request, tmp_path) -> AsyncGenerator[KeyValueStore, None]:
    """Each store backend: in-memory and SQLite through SQLAlchemy."""
    if request.param == "memory":
        store = MemoryKeyValueStore()
    else:
        db_settings = Settings(
            _env_file=None,
            kv_backend=KVBackend.SQL,
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'kv.db'}",
        )
        store = await SqlKeyValueStore.open(Database(db_settings))

    yield store

    await store.close()


@pytest.fixture
def job_store(kv, clock) -> JobStore:
    return JobStore(kv, clock)


@pytest.fixture
async def queue(job_store, settings) -> AsyncGenerator[JobQueue, None]:
    queue = JobQueue(job_store, settings)

    yield queue

    await queue.stop()
    await queue.wait_idle()


@pytest.fixture
async def scheduler(queue, kv, settings, clock) -> AsyncGenerator[JobScheduler, None]:
    scheduler = JobScheduler(queue, settings, store=ScheduleStore(kv), clock=clock)

    yield scheduler

    await scheduler.stop()


@pytest.fixture
def app(settings):
    """Create a test FastAPI application on an in-memory store."""
    return create_app(settings)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client; entering it runs the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client
