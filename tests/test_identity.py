"""Unit tests for caller identification strategies."""

import pytest

from conftest import make_request
from ratekeeper.core.identity import (
    FALLBACK_IDENTIFIER,
    authenticated_user,
    client_host,
    default_strategies,
    forwarded_for,
    identifier_type,
    real_ip,
    resolve_identifier,
)


class TestStrategies:
    @pytest.mark.asyncio
    async def test_forwarded_for_uses_first_hop(self) -> None:
        request = make_request({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.2, 10.0.0.3"})

        assert await forwarded_for(request) == "ip:203.0.113.7"

    @pytest.mark.asyncio
    async def test_forwarded_for_missing(self) -> None:
        assert await forwarded_for(make_request()) is None
        assert await forwarded_for(make_request({"X-Forwarded-For": " , 10.0.0.2"})) is None

    @pytest.mark.asyncio
    async def test_real_ip(self) -> None:
        assert await real_ip(make_request({"X-Real-IP": "198.51.100.1"})) == "ip:198.51.100.1"
        assert await real_ip(make_request()) is None

    @pytest.mark.asyncio
    async def test_client_host(self) -> None:
        assert await client_host(make_request(client=("192.0.2.5", 1234))) == "ip:192.0.2.5"
        assert await client_host(make_request(client=None)) is None

    @pytest.mark.asyncio
    async def test_authenticated_user_sync_resolver(self) -> None:
        strategy = authenticated_user(lambda request: "42")

        assert await strategy(make_request()) == "user:42"

    @pytest.mark.asyncio
    async def test_authenticated_user_async_resolver(self) -> None:
        async def _resolver(request):
            return "alice"

        assert await authenticated_user(_resolver)(make_request()) == "user:alice"

    @pytest.mark.asyncio
    async def test_authenticated_user_anonymous(self) -> None:
        assert await authenticated_user(lambda request: None)(make_request()) is None
        assert await authenticated_user(lambda request: "")(make_request()) is None

    @pytest.mark.asyncio
    async def test_authenticated_user_resolver_failure_is_anonymous(self) -> None:
        def _broken(request):
            raise RuntimeError("session backend down")

        assert await authenticated_user(_broken)(make_request()) is None


class TestResolveIdentifier:
    @pytest.mark.asyncio
    async def test_account_preferred_over_address(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.7"})
        strategies = default_strategies(lambda r: "42")

        assert await resolve_identifier(request, strategies) == "user:42"

    @pytest.mark.asyncio
    async def test_precedence_of_address_sources(self) -> None:
        strategies = default_strategies()
        both = make_request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.1"})
        real_only = make_request({"X-Real-IP": "198.51.100.1"})
        neither = make_request(client=("192.0.2.5", 1))

        assert await resolve_identifier(both, strategies) == "ip:203.0.113.7"
        assert await resolve_identifier(real_only, strategies) == "ip:198.51.100.1"
        assert await resolve_identifier(neither, strategies) == "ip:192.0.2.5"

    @pytest.mark.asyncio
    async def test_untrusted_proxy_headers_are_ignored(self) -> None:
        strategies = default_strategies(trust_forwarded_headers=False)
        request = make_request({"X-Forwarded-For": "203.0.113.7"}, client=("192.0.2.5", 1))

        assert await resolve_identifier(request, strategies) == "ip:192.0.2.5"

    @pytest.mark.asyncio
    async def test_anonymous_account_falls_back_to_address(self) -> None:
        strategies = default_strategies(lambda r: None)
        request = make_request(client=("192.0.2.5", 1))

        assert await resolve_identifier(request, strategies) == "ip:192.0.2.5"

    @pytest.mark.asyncio
    async def test_raising_strategy_is_skipped(self) -> None:
        async def lookup_session(request):
            raise KeyError("session")

        request = make_request(client=("192.0.2.5", 1))

        assert await resolve_identifier(request, [lookup_session, client_host]) == "ip:192.0.2.5"
        assert await resolve_identifier(request, [lookup_session]) == FALLBACK_IDENTIFIER

    @pytest.mark.asyncio
    async def test_fallback_when_nothing_matches(self) -> None:
        assert await resolve_identifier(make_request(client=None), default_strategies()) == FALLBACK_IDENTIFIER
        assert await resolve_identifier(make_request(), []) == "ip:unknown"

    @pytest.mark.asyncio
    async def test_account_and_address_spaces_never_collide(self) -> None:
        request = make_request(client=("42", 1))

        as_user = await resolve_identifier(request, default_strategies(lambda r: "42"))
        as_ip = await resolve_identifier(request, default_strategies())

        assert as_user != as_ip
        assert identifier_type(as_user) == "user"
        assert identifier_type(as_ip) == "ip"
