"""Caller identification for rate limiting.

Identification is an ordered list of strategies. Each strategy inspects the
request and returns an identifier or None; the first identifier wins. The
default order prefers an authenticated account over the network origin:

    authenticated_user -> forwarded_for -> real_ip -> client_host

Identifiers carry a prefix (``user:`` or ``ip:``) so that account ids and
addresses can never collide.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Sequence, Union

from fastapi import Request

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"
IP_PREFIX = "ip:"
FALLBACK_IDENTIFIER = f"{IP_PREFIX}unknown"

IdentityResolver = Callable[[Request], Union[str, None, Awaitable[Union[str, None]]]]
IdentificationStrategy = Callable[[Request], Awaitable[Union[str, None]]]


def identifier_type(identifier: str) -> str:
    """Return the identifier namespace ("user" or "ip") for logging."""
    return identifier.split(":", 1)[0]


def authenticated_user(resolver: IdentityResolver) -> IdentificationStrategy:
    """Build a strategy that identifies the caller by account id.

    Args:
        resolver: Sync or async callable returning the caller's account id, or
            None for anonymous requests.

    Returns:
        Strategy producing ``user:<id>``. A resolver that raises is logged and
        treated as anonymous so the origin address can still be used.
    """

    async def _strategy(request: Request) -> str | None:
        try:
            result = resolver(request)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.warning(
                "identity.resolver_failed",
                extra={"error_type": type(exc).__name__, "request_path": request.url.path},
            )
            return None
        if result is None or str(result) == "":
            return None
        return f"{USER_PREFIX}{result}"

    return _strategy


async def forwarded_for(request: Request) -> str | None:
    """First hop of X-Forwarded-For (the original client)."""
    header = request.headers.get("x-forwarded-for")
    if not header:
        return None
    first = header.split(",")[0].strip()
    return f"{IP_PREFIX}{first}" if first else None


async def real_ip(request: Request) -> str | None:
    header = (request.headers.get("x-real-ip") or "").strip()
    return f"{IP_PREFIX}{header}" if header else None


async def client_host(request: Request) -> str | None:
    if request.client and request.client.host:
        return f"{IP_PREFIX}{request.client.host}"
    return None


def default_strategies(
    identify: IdentityResolver | None = None,
    *,
    trust_forwarded_headers: bool = True,
) -> list[IdentificationStrategy]:
    """Build the standard strategy chain.

    Args:
        identify: Optional account resolver placed first in the chain.
        trust_forwarded_headers: Consult proxy headers before the peer address.
            Disable when the service is reachable without a trusted proxy.
    """

    strategies: list[IdentificationStrategy] = []
    if identify is not None:
        strategies.append(authenticated_user(identify))
    if trust_forwarded_headers:
        strategies.extend([forwarded_for, real_ip])
    strategies.append(client_host)
    return strategies


async def resolve_identifier(
    request: Request,
    strategies: Sequence[IdentificationStrategy],
) -> str:
    """Run strategies in order and return the first identifier found.

    A strategy that raises is logged and skipped, so a broken lookup falls
    through to the network origin instead of disabling the limit. When no
    strategy matches, every such request shares ``ip:unknown``.
    """

    for strategy in strategies:
        try:
            identifier = await strategy(request)
        except Exception as exc:
            logger.warning(
                "identity.strategy_failed",
                extra={
                    "strategy": getattr(strategy, "__name__", type(strategy).__name__),
                    "error_type": type(exc).__name__,
                    "request_path": request.url.path,
                },
            )
            continue
        if identifier:
            return identifier
    return FALLBACK_IDENTIFIER
