"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient, JobEngineAPIError

__all__ = ["JobEngineClient", "JobEngineAPIError"]


class JobEngineClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport=None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def list_jobs(
        self,
        status: str | None = None,
        name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if name:
            params["name"] = name
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}")

    def get_job_stats(self) -> dict[str, Any]:
        return self.api.get("/jobs/stats")

    def add_job(
        self,
        name: str,
        payload: dict[str, Any],
        priority: int | None = None,
        max_retries: int | None = None,
        delay_ms: int | None = None,
        job_id: str | None = None,
    ) -> dict[str, Any]:
        """Enqueue a job"""
        data: dict[str, Any] = {"name": name, "payload": payload}
        if priority is not None:
            data["priority"] = priority
        if max_retries is not None:
            data["max_retries"] = max_retries
        if delay_ms is not None:
            data["delay_ms"] = delay_ms
        if job_id:
            data["job_id"] = job_id
        return self.api.post("/jobs", data)

    def retry_job(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/retry")

    def delete_job(self, job_id: str) -> dict[str, Any]:
        return self.api.delete(f"/jobs/{job_id}")

    def cleanup_jobs(self, days_old: int | None = None) -> dict[str, Any]:
        """Reap old completed and failed jobs"""
        data = {"days_old": days_old} if days_old is not None else {}
        return self.api.post("/jobs/cleanup", data)

    # Schedule Endpoints
    def list_schedules(self) -> dict[str, Any]:
        return self.api.get("/schedules")

    def get_schedule(self, name: str) -> dict[str, Any]:
        return self.api.get(f"/schedules/{name}")

    def create_schedule(
        self,
        name: str,
        cron_expression: str,
        job_name: str,
        payload: dict[str, Any] | None = None,
        timezone: str | None = None,
        enabled: bool = True,
    ) -> dict[str, Any]:
        """Create a job-backed schedule"""
        data: dict[str, Any] = {
            "name": name,
            "cron_expression": cron_expression,
            "job_name": job_name,
            "payload": payload or {},
            "enabled": enabled,
        }
        if timezone:
            data["timezone"] = timezone
        return self.api.post("/schedules", data)

    def delete_schedule(self, name: str) -> dict[str, Any]:
        return self.api.delete(f"/schedules/{name}")

    def trigger_schedule(self, name: str) -> dict[str, Any]:
        return self.api.post(f"/schedules/{name}/trigger")

    def enable_schedule(self, name: str) -> dict[str, Any]:
        return self.api.post(f"/schedules/{name}/enable")

    def disable_schedule(self, name: str) -> dict[str, Any]:
        return self.api.post(f"/schedules/{name}/disable")
