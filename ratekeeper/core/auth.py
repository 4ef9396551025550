"""API key authentication and account resolution.

Keys are configured as a comma-separated list in ``APP_API_KEYS``. Each entry
is either ``key:account_id`` or a bare key; a bare key gets a stable account id
derived from its hash. The account id is what per-account rate limits count.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from ratekeeper.core.config import settings
from ratekeeper.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def _hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> dict[str, str]:
    """Parse configured API keys into a key -> account id mapping.

    Args:
        keys_string: Comma-separated entries of ``key`` or ``key:account``.

    Returns:
        Mapping of trimmed, non-empty keys to account ids.

    Examples:
        >>> parse_api_keys("k1:alice, k2:bob")
        {'k1': 'alice', 'k2': 'bob'}
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    keys: dict[str, str] = {}
    for entry in keys_string.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, account = entry.partition(":")
        key = key.strip()
        account = account.strip()
        if not key:
            continue
        keys[key] = account if sep and account else f"key-{_hash_key(key)}"
    return keys


def validate_api_key(provided_key: str) -> str:
    """Return the account id bound to provided_key.

    Raises:
        AuthenticationAppError: If no keys are configured or the key is unknown.
    """
    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    account_id = valid_keys.get(provided_key)
    if account_id is None:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": _hash_key(provided_key),
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )
    return account_id


def resolve_account_id(request: Request) -> str | None:
    """Account id of the caller, or None for anonymous/unknown callers.

    Used as the identity resolver for per-account rate limits.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        return None
    return parse_api_keys(settings.app.api_keys).get(api_key)


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.

    A no-op unless ``APP_API_KEY_REQUIRED=true``.

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required:
        return

    if not x_api_key:
        logger.warning(
            "auth.missing_key",
            extra={"auth_required": True, "api_key_present": False},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc
