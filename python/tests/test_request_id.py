"""Tests for X-Request-ID middleware and the /functions/* CORS layer.

Tests cover:
- Request ID generation, preservation and normalization
- Request ID presence on auth and API key failures
- Request ID in error response bodies
- Webhook preflights answered without an API key
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from companion.app import add_request_id_middleware, create_app
from companion.middleware.request_id import normalize_request_id
from tests.helpers import auth_headers, create_test_user_id


@pytest.fixture
def rid_client(session_factory, broker, storage, test_verifier):
    app = create_app(
        token_verifier=test_verifier,
        session_factory=session_factory,
        broker=broker,
        storage_client=storage,
    )
    add_request_id_middleware(app, log_requests=False)
    with TestClient(app) as client:
        yield client


class TestNormalizeRequestId:
    def test_uuid_lowercased(self):
        value = "A1B2C3D4-0000-4000-8000-0000000000AA"
        assert normalize_request_id(value) == value.lower()

    def test_safe_token_kept(self):
        assert normalize_request_id("edge-req_1.2") == "edge-req_1.2"

    @pytest.mark.parametrize("value", [None, "", "bad id!", "x" * 129])
    def test_unusable_values_replaced(self, value):
        UUID(normalize_request_id(value))


class TestRequestIdMiddleware:
    def test_generated_when_missing(self, rid_client):
        response = rid_client.get("/health")
        UUID(response.headers["X-Request-ID"])

    def test_valid_id_echoed(self, rid_client):
        response = rid_client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"

    def test_present_on_auth_failure(self, rid_client):
        response = rid_client.get("/chats", headers={"X-Request-ID": "trace-401"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "trace-401"

    def test_present_on_api_key_failure_body(self, rid_client):
        response = rid_client.post(
            "/functions/receive-message",
            json={"chatId": "00000000-0000-4000-8000-000000000001", "message": "hi"},
            headers={"X-Request-ID": "trace-key"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["request_id"] == "trace-key"

    def test_present_on_authenticated_request(self, rid_client):
        response = rid_client.get("/chats", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 200
        assert "X-Request-ID" in response.headers


class TestFunctionsCors:
    def test_preflight_needs_no_key(self, client: TestClient):
        response = client.options(
            "/functions/receive-message",
            headers={
                "Origin": "https://ai-backend.test",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.text == "ok"
        assert response.headers["access-control-allow-origin"] == "*"
        assert "x-api-key" in response.headers["access-control-allow-headers"]

    def test_error_responses_carry_cors_headers(self, client: TestClient):
        response = client.post(
            "/functions/set-typing-status",
            json={"chatId": "00000000-0000-4000-8000-000000000001", "isTyping": True},
            headers={"Origin": "https://ai-backend.test"},
        )

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == "*"

    def test_user_routes_untouched(self, client: TestClient):
        response = client.get("/health", headers={"Origin": "https://elsewhere.test"})
        assert "access-control-allow-origin" not in response.headers
