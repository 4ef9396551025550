"""HTTP middleware for request correlation and quota headers.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id and total duration into response headers
- Copies the caller's remaining quota (set by the rate limit dependency) onto
  successful responses as X-RateLimit-* headers

Usage:
    app.middleware("http")(request_context_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from ratekeeper.core.config import settings
from ratekeeper.core.logging import clear_request_id, set_request_id
from ratekeeper.core.rate_limit import REQUEST_STATE_ATTR


async def request_context_middleware(request: Request, call_next) -> Response:
    """Set the correlation id for the request and decorate the response.

    Quota headers are only added when the route went through a rate limit
    dependency that admitted the call; rejected calls already carry them on
    the 429 response.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")

    quota = getattr(request.state, REQUEST_STATE_ATTR, None)
    if quota is not None and settings.rate_limit.include_headers:
        for name, value in quota.as_headers().items():
            response.headers.setdefault(name, value)
    return response
