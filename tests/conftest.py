"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so settings never load a local
.env file, and provides a controllable clock for window expiry tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

# Set default env vars that all tests might need
os.environ.setdefault("APP_API_KEY_REQUIRED", "false")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123:alice,test-api-key-456:bob")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Iterator

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from ratekeeper.adapters.rate_limit.in_memory import InMemoryLimitStore
from ratekeeper.core.app_factory import create_app
from ratekeeper.core.policies import POLICY_NAMES, READ, RateLimitPolicy, build_policies


class FakeClock:
    """Deterministic clock (UNIX seconds) used to test window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_request(
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("10.0.0.1", 50000),
    path: str = "/v1/items",
) -> Request:
    """Build a bare Starlette request for unit tests."""
    scope: dict[str, Any] = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Iterator[InMemoryLimitStore]:
    limit_store = InMemoryLimitStore(clock=clock)
    yield limit_store
    limit_store.stop()


@pytest.fixture
def policy() -> RateLimitPolicy:
    """The 60 second / 3 request policy used throughout the examples."""
    return RateLimitPolicy(name="write", window_ms=60_000, max_requests=3)


@pytest.fixture
def app(store: InMemoryLimitStore) -> FastAPI:
    """App wired to the fake-clock store with a tight 'read' policy."""
    application = create_app(store=store)
    policies = build_policies()
    policies[READ] = RateLimitPolicy(name=READ, window_ms=60_000, max_requests=3)
    assert set(policies) == set(POLICY_NAMES)
    application.state.rate_limit_policies = policies
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def valid_api_key_headers() -> dict[str, str]:
    """Headers of the 'alice' account."""
    return {"X-API-Key": "test-api-key-123"}
