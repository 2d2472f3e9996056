"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from companion.core.errors import (
    AppError,
    StoreError,
    app_error_handler,
    unhandled_exception_handler,
)
from companion.core.middleware.request_id import RequestIdMiddleware
from companion.features.journal import service as journal_service
from companion.core.documents import DocumentStoreError
from companion.main import app


def test_validation_error_has_standard_shape():
    client = TestClient(app)
    resp = client.post("/v1/journal/entries", headers={"X-User-Id": "u1"}, json={"entryData": 5})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_unauthorized_error_normalized():
    client = TestClient(app)
    resp = client.get("/v1/journal/entries", headers={"X-Request-Id": "rid-401"})
    assert resp.status_code == 401
    assert resp.json()["error"] == {"code": "unauthorized", "message": "Unauthorized", "request_id": "rid-401"}


def test_store_error_hides_internal_detail(monkeypatch):
    def _fail(*args, **kwargs):
        raise DocumentStoreError("disk I/O error at /var/lib/db")

    monkeypatch.setattr(journal_service, "list_documents", _fail)
    client = TestClient(app)
    resp = client.get("/v1/journal/entries", headers={"X-User-Id": "u1"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == StoreError.code
    assert body["error"]["message"] == "Failed to load journal entries"
    assert "disk" not in resp.text


def test_unknown_route_is_not_found():
    client = TestClient(app)
    resp = client.get("/v1/journal/unknown/route")
    assert resp.status_code == 404


def test_unhandled_exception_is_generic():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    client = TestClient(test_app, raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "internal_error"
    assert "secret internals" not in resp.text
