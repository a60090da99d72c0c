from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

import tierguard.api.health as health_api
from tierguard.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.headers.get("x-request-id")
    assert resp.headers["x-request-id"] == resp.json()["request_id"]


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    resp = client.get("/", headers={"X-Request-Id": "test-rid-123"})
    assert resp.headers.get("x-request-id") == "test-rid-123"
    assert resp.json()["request_id"] == "test-rid-123"


def test_healthz_always_ok(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_ok_after_startup(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200


def test_readyz_reports_missing_tables(client, monkeypatch):
    class FakeInspector:
        def has_table(self, name):
            return name != "user_usage"

    monkeypatch.setattr(health_api, "inspect", lambda engine: FakeInspector())
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "user_usage" in resp.json()["detail"]


def test_readyz_database_unreachable(client, monkeypatch):
    monkeypatch.setattr(health_api, "check_connection", lambda engine: False)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unreachable"
