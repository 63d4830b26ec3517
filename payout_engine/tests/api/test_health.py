from fastapi.testclient import TestClient


def test_health_reports_rail_state(client, rail):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "req-123"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["request_id"] == "req-123"
    assert body["payouts_enabled"] is True
    assert r.headers["X-Request-Id"] == "req-123"

    rail.unavailable = True
    assert client.get("/api/v1/health").json()["payouts_enabled"] is False


def test_shutdown_closes_rail_client(app, rail):
    with TestClient(app) as c:
        assert c.get("/api/v1/health").status_code == 200
        assert rail.closed is False
    assert rail.closed is True
