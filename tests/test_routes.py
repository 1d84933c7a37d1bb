from fastapi.testclient import TestClient


def enqueue(client: TestClient, **overrides) -> dict:
    body = {"name": "send-email", "payload": {"to": "a@example.com"}}
    body.update(overrides)
    response = client.post("/v1/jobs", json=body)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def run_queue_once(client: TestClient) -> None:
    """Drive one poll tick on the app's own event loop."""
    queue = client.app.state.services.queue
    client.portal.call(queue.poll_once)
    client.portal.call(queue.wait_idle)


# Jobs


def test_enqueue_job(client: TestClient):
    data = enqueue(client)

    assert data["job_id"]
    assert data["job"]["status"] == "pending"
    assert data["job"]["priority"] == 0
    assert data["job"]["max_retries"] == 3
    assert data["job"]["payload"] == {"to": "a@example.com"}


def test_enqueue_with_job_id_is_idempotent(client: TestClient):
    first = enqueue(client, job_id="welcome-42")
    second = enqueue(client, job_id="welcome-42", payload={"to": "other@example.com"})

    assert first["job_id"] == second["job_id"] == "welcome-42"
    assert second["job"]["payload"] == {"to": "a@example.com"}


def test_enqueue_defaults_match_queue_add(client: TestClient):
    queue = client.app.state.services.queue
    in_code = client.portal.call(queue.add, "send-email", {})

    response = client.post("/v1/jobs", json={"name": "send-email"})

    assert response.status_code == 201
    via_api = response.json()["data"]["job"]
    from_code = client.get(f"/v1/jobs/{in_code}").json()["data"]
    assert via_api["payload"] == {}
    assert via_api["priority"] == from_code["priority"] == 0
    assert via_api["max_retries"] == from_code["max_retries"]


def test_enqueue_missing_name_is_400(client: TestClient):
    response = client.post("/v1/jobs", json={"payload": {}})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert any("name" in e["loc"] for e in error["details"]["errors"])


def test_enqueue_conflicting_timing_is_400(client: TestClient):
    response = client.post(
        "/v1/jobs",
        json={
            "name": "x",
            "payload": {},
            "delay_ms": 100,
            "scheduled_for": "2030-01-01T00:00:00Z",
        },
    )

    assert response.status_code == 400
    assert response.json()["ok"] is False


def test_get_job_and_not_found(client: TestClient):
    job_id = enqueue(client)["job_id"]

    found = client.get(f"/v1/jobs/{job_id}")
    missing = client.get("/v1/jobs/does-not-exist")

    assert found.status_code == 200
    assert found.json()["data"]["id"] == job_id
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


def test_list_jobs_with_filters(client: TestClient):
    enqueue(client, name="email")
    enqueue(client, name="email")
    enqueue(client, name="report")

    all_jobs = client.get("/v1/jobs").json()["data"]
    emails = client.get("/v1/jobs", params={"name": "email"}).json()["data"]
    paged = client.get("/v1/jobs", params={"limit": 1, "offset": 1}).json()["data"]

    assert all_jobs["count"] == 3
    assert emails["count"] == 2
    assert (paged["count"], paged["limit"], paged["offset"]) == (1, 1, 1)


def test_list_jobs_rejects_unknown_status(client: TestClient):
    response = client.get("/v1/jobs", params={"status": "sleeping"})

    assert response.status_code == 400


def test_job_stats(client: TestClient):
    enqueue(client)
    enqueue(client)

    stats = client.get("/v1/jobs/stats").json()["data"]

    assert stats["pending"] == 2
    assert stats["total"] == 2


def test_retry_failed_job(client: TestClient):
    async def broken(job):
        raise RuntimeError("smtp down")

    client.app.state.services.queue.process("send-email", broken)
    job_id = enqueue(client, max_retries=0)["job_id"]
    run_queue_once(client)

    failed = client.get(f"/v1/jobs/{job_id}").json()["data"]
    assert failed["status"] == "failed"
    assert failed["error"] == "smtp down"

    response = client.post(f"/v1/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"
    assert response.json()["data"]["attempts"] == 0


def test_retry_pending_job_conflicts(client: TestClient):
    job_id = enqueue(client)["job_id"]

    response = client.post(f"/v1/jobs/{job_id}/retry")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_delete_job(client: TestClient):
    job_id = enqueue(client)["job_id"]

    response = client.delete(f"/v1/jobs/{job_id}")

    assert response.status_code == 200
    assert response.json()["data"] == {"deleted": True, "job_id": job_id}
    assert client.get(f"/v1/jobs/{job_id}").status_code == 404
    assert client.delete(f"/v1/jobs/{job_id}").status_code == 404


def test_cleanup_jobs(client: TestClient):
    async def ok(job):
        return "sent"

    client.app.state.services.queue.process("send-email", ok)
    job_id = enqueue(client)["job_id"]
    run_queue_once(client)

    kept = client.post("/v1/jobs/cleanup", json={"days_old": 1}).json()["data"]
    reaped = client.post("/v1/jobs/cleanup", json={"days_old": 0}).json()["data"]

    assert kept["deleted"] == 0
    assert reaped["deleted"] == 1
    assert client.get(f"/v1/jobs/{job_id}").status_code == 404


# Schedules


def create_schedule(client: TestClient, **overrides):
    body = {
        "name": "nightly-report",
        "cron_expression": "0 3 * * *",
        "job_name": "build-report",
        "payload": {"kind": "daily"},
    }
    body.update(overrides)
    return client.post("/v1/schedules", json=body)


def test_create_schedule(client: TestClient):
    response = create_schedule(client, timezone="Europe/Berlin")

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["name"] == "nightly-report"
    assert data["timezone"] == "Europe/Berlin"
    assert data["next_run"] is not None
    assert data["run_count"] == 0


def test_create_schedule_invalid_cron_conflicts(client: TestClient):
    response = create_schedule(client, cron_expression="every day at 3")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_CRON"


def test_create_schedule_unknown_timezone(client: TestClient):
    response = create_schedule(client, timezone="Nowhere/Special")

    assert response.status_code == 400


def test_create_duplicate_schedule(client: TestClient):
    create_schedule(client)

    response = create_schedule(client)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_list_and_get_schedules(client: TestClient):
    create_schedule(client, name="b")
    create_schedule(client, name="a")

    listed = client.get("/v1/schedules").json()["data"]
    one = client.get("/v1/schedules/a")
    missing = client.get("/v1/schedules/zzz")

    assert listed["count"] == 2
    assert [s["name"] for s in listed["schedules"]] == ["a", "b"]
    assert one.status_code == 200
    assert missing.status_code == 404


def test_trigger_schedule_enqueues_job(client: TestClient):
    create_schedule(client)

    response = client.post("/v1/schedules/nightly-report/trigger")

    assert response.status_code == 200
    assert response.json()["data"]["run_count"] == 1
    jobs = client.get("/v1/jobs", params={"name": "build-report"}).json()["data"]["jobs"]
    assert [j["payload"] for j in jobs] == [{"kind": "daily"}]


def test_enable_and_disable_schedule(client: TestClient):
    create_schedule(client)

    disabled = client.post("/v1/schedules/nightly-report/disable").json()["data"]
    enabled = client.post("/v1/schedules/nightly-report/enable").json()["data"]

    assert disabled["enabled"] is False
    assert enabled["enabled"] is True
    assert client.post("/v1/schedules/unknown/enable").status_code == 404


def test_delete_schedule(client: TestClient):
    create_schedule(client)

    response = client.delete("/v1/schedules/nightly-report")

    assert response.status_code == 200
    assert response.json()["data"] == {"deleted": True, "name": "nightly-report"}
    assert client.get("/v1/schedules/nightly-report").status_code == 404
    assert client.delete("/v1/schedules/nightly-report").status_code == 404
