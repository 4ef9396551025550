"""Application factory for FastAPI app.

Centralizes app construction (state, middleware, handlers, routers) so tests
can build isolated apps with their own limit store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ratekeeper.adapters.rate_limit.base import AbstractLimitStore
from ratekeeper.adapters.rate_limit.in_memory import InMemoryLimitStore
from ratekeeper.api.routes import health_router, rate_limit_router
from ratekeeper.core.admission import AdmissionGuard
from ratekeeper.core.auth import resolve_account_id
from ratekeeper.core.config import settings
from ratekeeper.core.exception_handlers import setup_exception_handlers
from ratekeeper.core.logging import configure_logging
from ratekeeper.core.middleware import request_context_middleware
from ratekeeper.core.policies import build_policies

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the limit store's background sweep for the lifetime of the app."""
    store: AbstractLimitStore = app.state.admission_guard.store
    store.start()
    try:
        yield
    finally:
        store.stop()


def create_app(store: AbstractLimitStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        store: Limit store to use; a fresh in-memory store when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Ratekeeper",
        description=(
            "Fixed-window request admission controller. Guarded routes answer "
            "429 Too Many Requests with Retry-After once a caller exhausts the "
            "quota of the route's policy, and report X-RateLimit-* headers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    if store is None:
        store = InMemoryLimitStore(sweep_interval_seconds=settings.rate_limit.sweep_interval_seconds)

    app.state.rate_limit_policies = build_policies(settings.rate_limit)
    app.state.admission_guard = AdmissionGuard(
        store,
        identify=resolve_account_id,
        trust_forwarded_headers=settings.rate_limit.trust_forwarded_headers,
    )

    app.middleware("http")(request_context_middleware)

    setup_exception_handlers(app)

    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    logger.info(
        "app.created",
        extra={
            "rate_limit_enabled": settings.rate_limit.enabled,
            "policies": sorted(app.state.rate_limit_policies),
            "store": type(store).__name__,
        },
    )
    return app
