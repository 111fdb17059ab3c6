from fastapi.testclient import TestClient

import radio444.api.main as api_main


def test_health_returns_ok_when_services_are_up(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (True, None))
    monkeypatch.setattr(api_main, "test_redis_connection", lambda: (True, None))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["services"]["database"]["ok"] is True
    assert payload["services"]["redis"]["ok"] is True
    assert response.headers["x-request-id"]


def test_health_returns_503_when_any_dependency_fails(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (True, None))
    monkeypatch.setattr(api_main, "test_redis_connection", lambda: (False, "redis unavailable"))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["services"]["redis"]["error"] == "redis unavailable"


def test_version_endpoint_echoes_request_id() -> None:
    client = TestClient(api_main.app)
    response = client.get("/version", headers={"x-request-id": "req-444"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == "radio444"
    assert payload["version"]
    assert response.headers["x-request-id"] == "req-444"
