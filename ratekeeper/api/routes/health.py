from __future__ import annotations

from fastapi import APIRouter

from ratekeeper.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check; never rate limited.

    Returns:
        dict: ``{"status": "ok", "rate_limiting": <enabled flag>}``.
    """

    return {"status": "ok", "rate_limiting": settings.rate_limit.enabled}
