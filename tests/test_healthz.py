from fastapi.testclient import TestClient


def test_health_check_success(client: TestClient):
    """Test health check endpoint returns correct format."""
    response = client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True
    assert "data" in data

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["environment"] == "test"
    assert health_data["store"]["connected"] is True
    assert health_data["store"]["backend"] == "memory"


def test_health_check_reports_worker(client: TestClient):
    """Test worker section reflects the queue in this process."""
    client.post("/v1/jobs", json={"name": "process-webhook", "payload": {"url": "http://x"}})

    worker = client.get("/v1/healthz").json()["data"]["worker"]

    assert worker["worker_id"] == "worker-1"
    assert worker["running"] is False
    assert worker["max_concurrency"] == 5
    assert worker["handlers"] == ["maintenance-cleanup", "process-webhook"]
    assert worker["queue_depth"] == 1


def test_health_check_store_failure(client: TestClient):
    """Test an unreachable store is reported, not raised."""

    async def broken_ping():
        raise ConnectionError("store offline")

    client.app.state.services.kv.ping = broken_ping

    health_data = client.get("/v1/healthz").json()["data"]

    assert health_data["ok"] is False
    assert health_data["store"]["error"] == "store offline"
    assert health_data["worker"] is None


def test_health_check_response_structure(client: TestClient):
    """Test health check response envelope structure."""
    response = client.get("/v1/healthz")

    data = response.json()

    # Check response envelope structure
    required_keys = ["ok", "data", "message", "request_id"]
    for key in required_keys:
        assert key in data

    # Check that request ID is present in headers
    assert "X-Request-ID" in response.headers
