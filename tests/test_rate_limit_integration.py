"""Integration tests for rate limiting with a real HTTP server.

These tests start an actual Uvicorn server (lifespan included, so the
background sweeper runs) and talk to it over HTTP with httpx.
"""

import socket
import threading
import time
from typing import Generator

import httpx
import pytest
import uvicorn

from ratekeeper.adapters.rate_limit.in_memory import InMemoryLimitStore
from ratekeeper.core.app_factory import create_app
from ratekeeper.core.policies import READ, RateLimitPolicy, build_policies


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="module")
def live_store() -> InMemoryLimitStore:
    return InMemoryLimitStore(sweep_interval_seconds=0.05)


@pytest.fixture(scope="module")
def server(live_store: InMemoryLimitStore) -> Generator[str, None, None]:
    """Start server in a background thread for integration tests."""
    app = create_app(store=live_store)
    policies = build_policies()
    policies[READ] = RateLimitPolicy(name=READ, window_ms=60_000, max_requests=2)
    app.state.rate_limit_policies = policies

    port = _free_port()
    config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="error", access_log=False)
    uvicorn_server = uvicorn.Server(config)
    thread = threading.Thread(target=uvicorn_server.run, daemon=True)
    thread.start()

    base_url = f"http://127.0.0.1:{port}"
    for _ in range(50):
        try:
            if httpx.get(f"{base_url}/health", timeout=1.0).status_code == 200:
                break
        except (httpx.ConnectError, httpx.ReadTimeout):
            time.sleep(0.1)
    else:
        uvicorn_server.should_exit = True
        pytest.fail("Server failed to start")

    yield base_url

    uvicorn_server.should_exit = True
    thread.join(timeout=5)


class TestRateLimitIntegration:
    def test_quota_exhaustion_over_http(self, server: str) -> None:
        headers = {"X-Forwarded-For": "198.51.100.10"}

        first = httpx.get(f"{server}/v1/rate-limit/policies", headers=headers, timeout=5.0)
        second = httpx.get(f"{server}/v1/rate-limit/policies", headers=headers, timeout=5.0)
        third = httpx.get(f"{server}/v1/rate-limit/policies", headers=headers, timeout=5.0)

        assert [first.status_code, second.status_code, third.status_code] == [200, 200, 429]
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert 0 < int(third.headers["Retry-After"]) <= 60

    def test_other_client_unaffected(self, server: str) -> None:
        headers = {"X-Forwarded-For": "198.51.100.11"}

        response = httpx.get(f"{server}/v1/rate-limit/policies", headers=headers, timeout=5.0)

        assert response.status_code == 200

    def test_sweeper_running_under_lifespan(self, server: str, live_store: InMemoryLimitStore) -> None:
        assert live_store._sweeper is not None
        assert live_store._sweeper.is_alive()
