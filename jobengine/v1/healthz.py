from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jobengine.config.settings import Settings, SettingsDep
from jobengine.services import BackgroundServices, get_services
from jobengine.v1.core.exceptions import create_success_response

router = APIRouter()


class StoreHealth(BaseModel):
    """Key-value store health status."""

    connected: bool
    backend: str
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Queue and scheduler status for this process."""

    worker_id: str
    running: bool
    active_jobs: int = 0
    max_concurrency: int
    handlers: list[str] = []
    scheduler_running: bool = False
    schedules: int = 0
    queue_depth: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep,
    services: BackgroundServices = Depends(get_services),
):
    """Health check endpoint with store and worker status."""

    timestamp = datetime.now(UTC).isoformat()

    store_health = await _check_store_health(services)
    worker_health = await _check_worker_health(services) if store_health.connected else None

    health_data = {
        "ok": store_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "store": store_health.model_dump(),
        "worker": worker_health.model_dump() if worker_health else None,
    }

    return create_success_response(data=health_data)


async def _check_store_health(services: BackgroundServices) -> StoreHealth:
    """Check store connectivity and response time."""
    backend = services.settings.kv_backend.value
    start_time = datetime.now(UTC)

    try:
        await services.kv.ping()

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return StoreHealth(
            connected=True, backend=backend, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return StoreHealth(connected=False, backend=backend, error=str(e))


async def _check_worker_health(services: BackgroundServices) -> WorkerHealth:
    queue = services.queue
    stats = await queue.get_stats()

    return WorkerHealth(
        worker_id=queue.worker_id,
        running=queue.running,
        active_jobs=len(queue.active_jobs),
        max_concurrency=queue.max_concurrency,
        handlers=sorted(queue.registry.list()),
        scheduler_running=services.scheduler.running,
        schedules=len(services.scheduler.get_schedules()),
        queue_depth=stats.pending + stats.retrying + stats.running,
    )
