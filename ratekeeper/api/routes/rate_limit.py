from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from ratekeeper.adapters.rate_limit.base import AbstractLimitStore
from ratekeeper.core.admission import AdmissionGuard
from ratekeeper.core.auth import verify_api_key
from ratekeeper.core.identity import identifier_type
from ratekeeper.core.policies import READ, RateLimitPolicy, get_policy
from ratekeeper.core.rate_limit import get_admission_guard, get_limit_store, get_policies, rate_limit
from ratekeeper.schemas.rate_limit import PolicyListResponse, PolicyResponse, QuotaStatusResponse

router = APIRouter(tags=["Rate limit"])


@router.get(
    "/rate-limit/policies",
    response_model=PolicyListResponse,
    dependencies=[Depends(verify_api_key), Depends(rate_limit(READ))],
)
async def list_policies(
    policies: Annotated[dict[str, RateLimitPolicy], Depends(get_policies)],
) -> PolicyListResponse:
    """List the configured admission policies."""

    return PolicyListResponse(
        policies=[
            PolicyResponse(name=p.name, window_ms=p.window_ms, max_requests=p.max_requests)
            for p in policies.values()
        ]
    )


@router.get(
    "/rate-limit/status",
    response_model=QuotaStatusResponse,
    dependencies=[Depends(verify_api_key), Depends(rate_limit(READ))],
)
async def quota_status(
    request: Request,
    guard: Annotated[AdmissionGuard, Depends(get_admission_guard)],
    store: Annotated[AbstractLimitStore, Depends(get_limit_store)],
    policies: Annotated[dict[str, RateLimitPolicy], Depends(get_policies)],
    policy: str = Query(..., description="Policy name to report on"),
) -> QuotaStatusResponse:
    """Report the caller's quota under a policy.

    Reading the status does not register an attempt under ``policy``; the
    call itself is counted against the ``read`` policy like any other read.
    The caller is identified with the guard's own resolver, the same one
    ``rate_limit()`` uses; routes that pass a custom ``identify`` count
    under identifiers this endpoint cannot see.

    Raises:
        ValidationAppError: 400 if the policy name is unknown.
    """

    target = get_policy(policy, policies)
    identifier = await guard.identify(request)
    entry = store.peek(identifier, target)

    used = entry.count if entry else 0
    return QuotaStatusResponse(
        policy=target.name,
        identifier_type=identifier_type(identifier),
        limit=target.max_requests,
        used=used,
        remaining=max(0, target.max_requests - used),
        reset_at_ms=int(entry.window_reset_at_ms) if entry else None,
    )
