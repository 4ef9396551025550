"""Rate limiting dependency for FastAPI routes.

This module wires the admission guard into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``rate_limit("<policy>")`` only.
- Swap-friendly: the store lives on ``app.state`` and is reached through
  ``get_admission_guard`` so tests can override it.
- Fail open: a broken store never blocks traffic.

Identification strategy:
- Per-account limit when the caller presents a known API key.
- Otherwise fall back to the client address (proxy headers, then peer).
"""

from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status

from ratekeeper.adapters.rate_limit.base import AbstractLimitStore
from ratekeeper.core.admission import AdmissionGuard, QuotaInfo
from ratekeeper.core.config import settings
from ratekeeper.core.errors import LimitStoreAppError
from ratekeeper.core.identity import IdentityResolver
from ratekeeper.core.policies import RateLimitPolicy, build_policies, get_policy

logger = logging.getLogger(__name__)

REQUEST_STATE_ATTR = "rate_limit"


def get_admission_guard(request: Request) -> AdmissionGuard:
    """Return the application's admission guard (set by ``create_app``).

    Raises:
        LimitStoreAppError: 503 if the application was built without one.
    """
    guard = getattr(request.app.state, "admission_guard", None)
    if guard is None:
        raise LimitStoreAppError(
            code="limit_store_unavailable",
            message="Rate limiting is not configured for this application",
            details={"store": "missing"},
        )
    return guard


def get_limit_store(request: Request) -> AbstractLimitStore:
    return get_admission_guard(request).store


def get_policies(request: Request) -> dict[str, RateLimitPolicy]:
    policies = getattr(request.app.state, "rate_limit_policies", None)
    return policies if policies is not None else build_policies()


def rate_limit(
    policy_name: str,
    identify: IdentityResolver | None = None,
) -> Callable[..., Awaitable[QuotaInfo | None]]:
    """Build a FastAPI dependency enforcing the named policy.

    When enabled, registers one attempt for the caller. If the caller is over
    quota, raises HTTP 429; otherwise the quota is stored on ``request.state``
    and rendered as response headers by the request context middleware.

    Args:
        policy_name: Name of a configured policy (e.g. "write").
        identify: Account resolver for this route; defaults to the resolver
            the admission guard was built with (the API key account id).

    Usage:
        @router.post("/items", dependencies=[Depends(rate_limit("write"))])
        async def create_item(): ...
    """

    async def enforce_rate_limit(
        request: Request,
        guard: Annotated[AdmissionGuard, Depends(get_admission_guard)],
        policies: Annotated[dict[str, RateLimitPolicy], Depends(get_policies)],
    ) -> QuotaInfo | None:
        if not settings.rate_limit.enabled:
            return None

        policy = get_policy(policy_name, policies)
        decision = await guard.admit(request, policy, identify)
        if decision is None:
            return None

        quota = QuotaInfo.from_decision(decision)
        if decision.allowed:
            setattr(request.state, REQUEST_STATE_ATTR, quota)
            return quota

        retry_after = quota.retry_after_seconds or 0
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "too_many_requests",
                "message": f"Rate limit exceeded. Please try again in {retry_after} seconds.",
                "retry_after": retry_after,
            },
            headers=quota.as_headers() if settings.rate_limit.include_headers else None,
        )

    enforce_rate_limit.__name__ = f"enforce_rate_limit_{policy_name}"
    return enforce_rate_limit
