"""Admission guard: turns limit store decisions into handler outcomes.

The guard knows nothing about HTTP status codes. It resolves who is calling,
registers one attempt in the limit store and either short-circuits with a
``RateLimitExceeded`` outcome or runs the wrapped handler and returns its
result together with the caller's remaining quota.

If the store itself fails, the guard fails open: the failure is logged and
the handler runs as if the attempt had been admitted.
"""

from __future__ import annotations

import functools
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from fastapi import Request

from ratekeeper.adapters.rate_limit.base import AbstractLimitStore, RateLimitDecision
from ratekeeper.core.identity import (
    IdentificationStrategy,
    IdentityResolver,
    authenticated_user,
    default_strategies,
    identifier_type,
    resolve_identifier,
)
from ratekeeper.core.policies import RateLimitPolicy

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class QuotaInfo:
    """Quota metadata surfaced to callers on every decision."""

    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None

    @classmethod
    def from_decision(cls, decision: RateLimitDecision) -> QuotaInfo:
        return cls(
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at_ms=decision.reset_at_ms,
            retry_after_seconds=None if decision.allowed else decision.retry_after_seconds,
        )

    def as_headers(self) -> dict[str, str]:
        """Render conventional advisory rate limit headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_ms),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


@dataclass(frozen=True)
class RateLimitExceeded:
    """Outcome returned instead of calling the handler when over quota."""

    quota: QuotaInfo

    @property
    def retry_after_seconds(self) -> int:
        return self.quota.retry_after_seconds or 0


@dataclass(frozen=True)
class Admitted:
    """Outcome of an admitted call.

    ``quota`` is None when the limit store failed and the call was let through.
    """

    result: Any
    quota: QuotaInfo | None


def hash_identifier(identifier: str) -> str:
    """Hash the identifier for logging without exposing account ids or addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


class AdmissionGuard:
    """Consults a limit store on behalf of request handlers.

    Args:
        store: Limit store holding the counters.
        identify: Default account resolver used when guard()/admit() get none.
        strategies: Anonymous identification chain; defaults to proxy headers
            followed by the peer address.
        trust_forwarded_headers: Used only when building the default chain.
    """

    def __init__(
        self,
        store: AbstractLimitStore,
        *,
        identify: IdentityResolver | None = None,
        strategies: Sequence[IdentificationStrategy] | None = None,
        trust_forwarded_headers: bool = True,
    ) -> None:
        self.store = store
        self._identify = identify
        self._strategies = list(
            strategies
            if strategies is not None
            else default_strategies(trust_forwarded_headers=trust_forwarded_headers)
        )

    def strategies_for(self, identify: IdentityResolver | None = None) -> list[IdentificationStrategy]:
        resolver = identify or self._identify
        if resolver is None:
            return list(self._strategies)
        return [authenticated_user(resolver), *self._strategies]

    async def identify(self, request: Request, identify: IdentityResolver | None = None) -> str:
        return await resolve_identifier(request, self.strategies_for(identify))

    async def admit(
        self,
        request: Request,
        policy: RateLimitPolicy,
        identify: IdentityResolver | None = None,
    ) -> RateLimitDecision | None:
        """Register one attempt for the caller of request.

        Returns:
            The store's decision, or None when the store failed (fail open).
        """
        identifier = await self.identify(request, identify)
        try:
            decision = self.store.attempt(identifier, policy)
        except Exception as exc:
            logger.error(
                "rate_limit.store_failed",
                extra={
                    "policy": policy.name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return None

        log_extra = {
            "policy": policy.name,
            "key_type": identifier_type(identifier),
            "key_hash": hash_identifier(identifier),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_ms": policy.window_ms,
        }
        if decision.allowed:
            logger.info("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
        return decision

    def guard(
        self,
        policy: RateLimitPolicy,
        identify: IdentityResolver | None = None,
    ) -> Callable[[Handler], Callable[..., Awaitable[Admitted | RateLimitExceeded]]]:
        """Wrap an async ``handler(request, *args, **kwargs)`` with admission control.

        Usage:
            @guard.guard(policies["write"], identify=current_account_id)
            async def update_item(request, item_id):
                ...

        Exceptions raised by the handler propagate unchanged.
        """

        def decorator(handler: Handler) -> Callable[..., Awaitable[Admitted | RateLimitExceeded]]:
            @functools.wraps(handler)
            async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Admitted | RateLimitExceeded:
                decision = await self.admit(request, policy, identify)
                if decision is None:
                    return Admitted(result=await handler(request, *args, **kwargs), quota=None)

                quota = QuotaInfo.from_decision(decision)
                if not decision.allowed:
                    return RateLimitExceeded(quota=quota)

                return Admitted(result=await handler(request, *args, **kwargs), quota=quota)

            return wrapper

        return decorator
