"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Admission rejections are not errors; a caller over quota gets a decision
object with ``allowed=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    policy: str
    field: str
    min_value: int
    actual_value: Any
    known_policies: list[str]
    store: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails (e.g. a malformed policy)."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class LimitStoreAppError(AppError):
    """Raised when no limit store is available to serve a request.

    Answered with 503. Failures inside a configured store never surface as
    this error: the admission guard logs them and admits the call.
    """
