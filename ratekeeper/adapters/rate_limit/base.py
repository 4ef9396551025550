"""Limit store interfaces.

The admission guard depends on this abstraction (not the concrete
implementation) so we can swap storage backends later (e.g., Redis) with
minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ratekeeper.core.policies import RateLimitPolicy


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of registering one attempt against a policy.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window for the policy.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at_ms: UNIX epoch milliseconds when the current window ends.
        retry_after_seconds: Seconds to wait before retrying; only set when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None


@dataclass
class CounterEntry:
    """Attempts registered for one key in its current window."""

    count: int
    window_reset_at_ms: float

    def is_expired(self, now_ms: float) -> bool:
        return self.window_reset_at_ms <= now_ms


class AbstractLimitStore(ABC):
    """Interface for limit stores."""

    @abstractmethod
    def attempt(self, identifier: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Register one attempt for identifier under policy.

        Args:
            identifier: Caller identifier (e.g., ``user:42``, ``ip:10.0.0.1``).
            policy: Policy whose window and limit apply.

        Returns:
            RateLimitDecision describing whether the attempt is admitted.
        """
        raise NotImplementedError

    def peek(self, identifier: str, policy: RateLimitPolicy) -> CounterEntry | None:
        """Return the live counter for identifier without registering an attempt."""
        return None

    def start(self) -> None:
        """Start background maintenance, if the backend needs any."""

    def stop(self) -> None:
        """Stop background maintenance started by start()."""
