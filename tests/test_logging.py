import logging

import pytest
import structlog

from jobengine.config.logging import (
    NOISY_LOGGERS,
    job_context,
    schedule_context,
    setup_logging,
)
from jobengine.v1.jobs.models import Job


@pytest.fixture
def restore_noisy_loggers():
    def reset():
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)

    reset()
    yield
    reset()


def test_job_context_binds_and_unbinds(clock):
    job = Job(id="job-1", name="send-email", payload={}, attempts=2, created_at=clock())

    with job_context(job, "worker-1"):
        bound = structlog.contextvars.get_contextvars()

    assert bound["job_id"] == "job-1"
    assert bound["job_name"] == "send-email"
    assert bound["attempt"] == 2
    assert bound["worker_id"] == "worker-1"
    assert "job_id" not in structlog.contextvars.get_contextvars()


def test_schedule_context():
    with schedule_context("nightly"):
        assert structlog.contextvars.get_contextvars()["schedule_name"] == "nightly"

    assert "schedule_name" not in structlog.contextvars.get_contextvars()


async def test_handler_runs_inside_job_context(queue):
    seen = {}

    async def capture(job):
        seen.update(structlog.contextvars.get_contextvars())

    queue.process("capture", capture)
    job_id = await queue.add("capture", {})
    await queue.poll_once()
    await queue.wait_idle()

    assert seen["job_id"] == job_id
    assert seen["worker_id"] == queue.worker_id
    assert seen["attempt"] == 1


async def test_schedule_action_runs_inside_schedule_context(scheduler):
    seen = {}
    scheduler.schedule(
        "nightly",
        "0 3 * * *",
        lambda: seen.update(structlog.contextvars.get_contextvars()),
    )

    await scheduler.trigger("nightly")

    assert seen["schedule_name"] == "nightly"


def test_quiets_client_loggers_outside_debug(settings, restore_noisy_loggers):
    setup_logging(settings.model_copy(update={"debug": False, "log_level": "INFO"}))

    assert logging.getLogger("httpx").level == logging.WARNING


def test_keeps_client_loggers_in_debug(settings, restore_noisy_loggers):
    setup_logging(settings.model_copy(update={"debug": True, "log_level": "DEBUG"}))

    assert logging.getLogger("httpx").level == logging.NOTSET
