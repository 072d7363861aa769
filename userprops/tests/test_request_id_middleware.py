from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from userprops.core.logging import get_request_id
from userprops.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {
            "request_id": getattr(request.state, "request_id", None),
            "context_request_id": get_request_id(),
        }

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/")
    assert resp.status_code == 200
    rid_header = resp.headers.get("x-request-id")
    body = resp.json()

    assert rid_header
    assert body["request_id"] == rid_header
    assert body["context_request_id"] == rid_header


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    provided = "test-rid-123"
    resp = client.get("/", headers={"X-Request-Id": provided})

    assert resp.status_code == 200
    assert resp.headers.get("x-request-id") == provided
    assert resp.json().get("request_id") == provided
