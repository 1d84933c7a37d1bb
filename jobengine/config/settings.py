from enum import Enum
from typing import Literal

from fastapi import Depends
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KVBackend(str, Enum):
    MEMORY = "memory"
    SQL = "sql"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Job Engine", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=True, description="Debug mode")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of workers")

    # Store
    kv_backend: KVBackend = Field(
        default=KVBackend.SQL, description="Key-value store backend"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/jobengine.db",
        description="Database connection URL",
    )
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(default=20, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database connection recycle time in seconds")
    db_echo: bool = Field(default=False, description="Log every SQL statement")

    # Job queue
    job_concurrency: int = Field(
        default=5, ge=1, description="Maximum jobs processed concurrently per process"
    )
    job_poll_interval_ms: int = Field(
        default=1000, ge=100, description="Delay between poll ticks"
    )
    job_default_priority: int = Field(
        default=0, description="Priority for jobs added without one (higher runs first)"
    )
    job_default_max_retries: int = Field(
        default=3, ge=0, description="Retries allowed after the first attempt"
    )
    job_backoff_base_ms: int = Field(
        default=1000, ge=1, description="Base delay for exponential retry backoff"
    )
    job_max_backoff_ms: int = Field(
        default=60000, ge=1, description="Upper bound for a single retry delay"
    )
    job_handler_timeout_s: float | None = Field(
        default=300.0, gt=0, description="Per-job handler deadline, None disables it"
    )
    job_cleanup_after_days: int = Field(
        default=7, ge=0, description="Age after which terminal jobs are reaped"
    )
    job_list_max_limit: int = Field(
        default=1000, ge=1, description="Largest page size accepted by list endpoints"
    )
    worker_id: str | None = Field(
        default=None, description="Worker identity recorded on claimed jobs"
    )

    # Scheduler
    scheduler_check_interval_s: float = Field(
        default=60.0, ge=1, description="Longest sleep between scheduler ticks"
    )
    scheduler_default_timezone: str = Field(
        default="UTC", description="Timezone for schedules registered without one"
    )

    # Lifecycle
    enable_background_services: bool = Field(
        default=True, description="Start queue and scheduler with the API process"
    )
    strict_handler_validation: bool = Field(
        default=True,
        description="Fail startup when a schedule references a job without a handler",
    )

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        if self.job_backoff_base_ms > self.job_max_backoff_ms:
            raise ValueError(
                f"JOB_BACKOFF_BASE_MS={self.job_backoff_base_ms} exceeds "
                f"JOB_MAX_BACKOFF_MS={self.job_max_backoff_ms}."
            )

        # The in-memory store is not shared between processes
        if self.environment == "production" and self.kv_backend == KVBackend.MEMORY:
            raise ValueError(
                "KV_BACKEND=memory is not allowed in production environment. "
                "Use KV_BACKEND=sql for production deployments."
            )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Dependency injection function for settings."""
    return settings


# Convenience type alias for dependency injection
SettingsDep = Depends(get_settings)
