"""
Built-in job handlers.

These implement the JobHandler protocol and are registered on a JobQueue by
`register_builtin_handlers`. Application code registers its own handlers
the same way through `JobQueue.process`.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from jobengine.config.settings import Settings
from jobengine.v1.jobs.models import Job

if TYPE_CHECKING:
    from jobengine.v1.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

WEBHOOK_JOB = "process-webhook"
MAINTENANCE_CLEANUP_JOB = "maintenance-cleanup"

WEBHOOK_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


class WebhookHandler:
    """
    Job handler that delivers an HTTP request.

    Payload expected:
    {
        "url": "https://example.com/hook",
        "method": "POST",           # optional
        "body": {...},              # optional, sent as JSON
        "headers": {"X-Key": "v"},  # optional
        "timeout_s": 10             # optional
    }

    Any non-2xx response raises, so delivery is retried with backoff.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.client = client

    async def handle(self, job: Job) -> dict[str, Any]:
        payload = job.payload if isinstance(job.payload, dict) else {}

        url = payload.get("url")
        if not url:
            raise ValueError("url is required in payload")

        method = str(payload.get("method", "POST")).upper()
        if method not in WEBHOOK_METHODS:
            raise ValueError(f"Unsupported webhook method: {method}")

        headers = {"User-Agent": f"jobengine/{self.settings.version}"}
        headers.update(payload.get("headers") or {})
        timeout = float(payload.get("timeout_s", 10.0))

        request_kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
        if "body" in payload and method != "GET":
            request_kwargs["json"] = payload["body"]

        if self.client is not None:
            response = await self.client.request(method, url, **request_kwargs)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(method, url, **request_kwargs)

        if response.is_error:
            logger.warning(
                "Webhook delivery failed",
                extra={"job_id": job.id, "url": url, "status_code": response.status_code},
            )
            raise RuntimeError(f"Webhook returned HTTP {response.status_code}")

        logger.info(
            "Webhook delivered",
            extra={"job_id": job.id, "url": url, "status_code": response.status_code},
        )
        return {"status_code": response.status_code, "url": url}


class MaintenanceCleanupHandler:
    """
    Job handler that reaps old completed and failed jobs.

    Payload expected:
    {
        "days_old": 7,    # optional, defaults to JOB_CLEANUP_AFTER_DAYS
        "dry_run": false  # optional
    }
    """

    def __init__(self, queue: "JobQueue"):
        self.queue = queue

    async def handle(self, job: Job) -> dict[str, Any]:
        payload = job.payload if isinstance(job.payload, dict) else {}
        days_old = payload.get("days_old", self.queue.settings.job_cleanup_after_days)
        dry_run = bool(payload.get("dry_run", False))

        if not isinstance(days_old, int) or days_old < 0:
            raise ValueError(f"days_old must be a non-negative integer, got: {days_old}")

        cutoff = self.queue.clock() - timedelta(days=days_old)
        if dry_run:
            logger.info("Maintenance cleanup dry run", extra={"cutoff": cutoff.isoformat()})
            return {"dry_run": True, "deleted": 0, "cutoff": cutoff.isoformat()}

        deleted = await self.queue.cleanup(cutoff)
        logger.info(
            "Maintenance cleanup completed",
            extra={"deleted_count": deleted, "cutoff": cutoff.isoformat()},
        )
        return {"dry_run": False, "deleted": deleted, "cutoff": cutoff.isoformat()}


def register_builtin_handlers(
    queue: "JobQueue", settings: Settings, http_client: httpx.AsyncClient | None = None
) -> None:
    """Register the built-in job handlers on a queue."""

    queue.process(WEBHOOK_JOB, WebhookHandler(settings, http_client))
    queue.process(MAINTENANCE_CLEANUP_JOB, MaintenanceCleanupHandler(queue))

    logger.info(
        "Built-in job handlers registered",
        extra={"registered_handlers": queue.registry.list()},
    )
