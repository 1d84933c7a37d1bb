import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

from .settings import Settings, settings as default_settings

if TYPE_CHECKING:
    from jobengine.v1.jobs.models import Job

# Per-request and per-query chatter from the store driver and webhook client
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structured logging with structlog."""
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    if not settings.debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    # Configure structlog
    structlog.configure(
        processors=[
            # Job, schedule and request context bound by the helpers below
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            (
                structlog.processors.CallsiteParameterAdder(
                    parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
                )
                if settings.debug
                else structlog.processors.CallsiteParameterAdder(parameters=[])
            ),
            # Handler failures carry tracebacks; render them in both modes
            structlog.processors.format_exc_info,
            (
                structlog.dev.ConsoleRenderer()
                if settings.debug
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


@contextmanager
def job_context(job: "Job", worker_id: str) -> Iterator[None]:
    """
    Bind the running job to every structlog message emitted inside the block,
    including messages from the handler itself.

    Each job runs in its own task, so the binding never leaks into other jobs.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job.id,
        job_name=job.name,
        attempt=job.attempts,
        worker_id=worker_id,
    ):
        yield


@contextmanager
def schedule_context(name: str) -> Iterator[None]:
    """Bind the firing schedule's name while its action runs."""
    with structlog.contextvars.bound_contextvars(schedule_name=name):
        yield
