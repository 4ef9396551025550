"""Tests for global exception handlers.

Validates that domain errors map to stable HTTP status codes and a consistent
error body, and that unexpected errors never leak internals.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ratekeeper.core.errors import (
    AppError,
    AuthenticationAppError,
    LimitStoreAppError,
    ValidationAppError,
)
from ratekeeper.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def handler_client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (ValidationAppError(code="invalid_rate_limit_policy", message="bad policy"), 400),
            (AuthenticationAppError(code="invalid_api_key", message="Invalid or missing API key"), 403),
            (LimitStoreAppError(code="store_unavailable", message="Limit store unavailable"), 503),
        ],
    )
    def test_status_mapping(
        self,
        app_with_handlers: FastAPI,
        handler_client: TestClient,
        error: AppError,
        status_code: int,
    ) -> None:
        @app_with_handlers.get("/boom")
        async def boom():
            raise error

        response = handler_client.get("/boom")

        assert response.status_code == status_code
        data = response.json()
        assert data["error"]["code"] == error.code
        assert data["error"]["message"] == error.message
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_details_included_when_present(self, app_with_handlers: FastAPI, handler_client: TestClient) -> None:
        @app_with_handlers.get("/details")
        async def details():
            raise ValidationAppError(
                code="unknown_rate_limit_policy",
                message="Unknown rate limit policy: 'bogus'",
                details={"known_policies": ["auth", "read"]},
            )

        response = handler_client.get("/details")

        assert response.status_code == 400
        assert response.json()["error"]["details"]["known_policies"] == ["auth", "read"]

    def test_app_error_str_is_message(self) -> None:
        assert str(ValidationAppError(code="x", message="readable")) == "readable"


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_handler_registered(self, app_with_handlers: FastAPI) -> None:
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_generic_body_without_internals(self) -> None:
        request = AsyncMock()
        request.url.path = "/v1/rate-limit/policies"
        request.method = "GET"

        exc = RuntimeError("lock poisoned in limit store")
        response = asyncio.run(general_exception_handler(request, exc))

        body = response.body.decode()
        data = json.loads(body)
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "lock poisoned" not in body
        assert "RuntimeError" not in body
        assert "Traceback" not in body

    def test_multiple_setups_do_not_fail(self) -> None:
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
