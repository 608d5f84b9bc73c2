"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from mocks import FakeContentProvider, FakeGateway
from voxpost.core.errors import AppError, ConflictError, app_error_handler, unhandled_exception_handler
from voxpost.core.middleware.request_id import RequestIdMiddleware
from voxpost.main import create_app


def _client():
    return TestClient(create_app(gateway=FakeGateway(), provider=FakeContentProvider()))


def test_app_error_has_standard_shape():
    resp = _client().post("/api/auth/login", json={"email": "x@example.com", "password": "whatever1"})
    assert resp.status_code == 401
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_request_validation_maps_to_validation_error():
    resp = _client().post("/api/auth/signup", json={"email": "x@example.com"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert any("password" in issue["loc"] for issue in body["error"]["issues"])


def test_unknown_route_is_not_found():
    resp = _client().get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_incoming_request_id_is_echoed():
    resp = _client().get("/healthz", headers={"x-request-id": "req-123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["x-request-id"] == "req-123"


def test_custom_details_and_unhandled_errors():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/conflict")
    def conflict():
        raise ConflictError("taken", details={"field": "email"})

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    client = TestClient(app, raise_server_exceptions=False)
    conflict_body = client.get("/conflict").json()
    assert conflict_body["error"]["code"] == "CONFLICT"
    assert conflict_body["error"]["field"] == "email"

    resp = client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
    assert "kaboom" not in resp.text
