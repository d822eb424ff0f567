"""Tests for RequestIDMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.base import success_response
from api.middleware import RequestIDMiddleware, get_current_request_id


@pytest.fixture
def app():
    """Minimal FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/state")
    async def state_endpoint(request: Request):
        return JSONResponse({"request_id": request.state.request_id})

    @app.get("/envelope")
    def envelope_endpoint():
        return success_response({}).model_dump(mode="json")

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    def test_response_has_uuid_request_id(self, client):
        response = client.get("/state")

        UUID(response.headers["X-Request-ID"])

    def test_request_state_matches_header(self, client):
        response = client.get("/state")

        assert response.json()["request_id"] == response.headers["X-Request-ID"]

    def test_envelope_meta_matches_header(self, client):
        """Sync routes run in a worker thread and still see the request ID."""
        response = client.get("/envelope")

        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]

    def test_caller_supplied_id_is_kept(self, client):
        response = client.get("/state", headers={"X-Request-ID": "gw-delivery-42"})

        assert response.headers["X-Request-ID"] == "gw-delivery-42"
        assert response.json()["request_id"] == "gw-delivery-42"

    def test_oversized_id_truncated(self, client):
        response = client.get("/state", headers={"X-Request-ID": "x" * 500})

        assert len(response.headers["X-Request-ID"]) == 128

    def test_each_request_gets_unique_id(self, client):
        r1 = client.get("/state")
        r2 = client.get("/state")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]

    def test_context_cleared_after_request(self, client):
        client.get("/state")

        assert get_current_request_id() is None
