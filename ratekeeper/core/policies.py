"""Named rate limit policies.

A policy is a (window length, max attempts) pair. Policies are validated when
they are defined so that the admission hot path never has to check them.
"""

from __future__ import annotations

from dataclasses import dataclass

from ratekeeper.core.config import RateLimitSettings, settings
from ratekeeper.core.errors import ValidationAppError

AUTH = "auth"
WRITE = "write"
READ = "read"
PASSWORD_RESET = "password_reset"
REGISTRATION = "registration"

POLICY_NAMES: tuple[str, ...] = (AUTH, WRITE, READ, PASSWORD_RESET, REGISTRATION)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable admission rule.

    Attributes:
        name: Policy name; scopes counters so each policy is tracked separately.
        window_ms: Length of the fixed window in milliseconds.
        max_requests: Attempts admitted per window.
    """

    name: str
    window_ms: int
    max_requests: int

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValidationAppError(
                code="invalid_rate_limit_policy",
                message="Rate limit policy name must be a non-empty string",
                details={"field": "name"},
            )
        self._require_positive_int("window_ms", self.window_ms)
        self._require_positive_int("max_requests", self.max_requests)

    def _require_positive_int(self, field: str, value: object) -> None:
        # bool is an int subclass; True must not pass as a limit of 1
        if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
            return
        raise ValidationAppError(
            code="invalid_rate_limit_policy",
            message=f"Policy '{self.name}' {field} must be an integer >= 1",
            details={
                "policy": self.name,
                "field": field,
                "min_value": 1,
                "actual_value": value,
            },
        )

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


def build_policies(rate_limit_settings: RateLimitSettings | None = None) -> dict[str, RateLimitPolicy]:
    """Build the named policies from configuration.

    Args:
        rate_limit_settings: Settings to read; defaults to the global settings.

    Returns:
        Mapping of policy name to policy.
    """

    cfg = rate_limit_settings or settings.rate_limit
    return {
        name: RateLimitPolicy(
            name=name,
            window_ms=getattr(cfg, f"{name}_window_ms"),
            max_requests=getattr(cfg, f"{name}_max_requests"),
        )
        for name in POLICY_NAMES
    }


def get_policy(name: str, policies: dict[str, RateLimitPolicy] | None = None) -> RateLimitPolicy:
    """Look up a named policy.

    Raises:
        ValidationAppError: If no policy with that name is configured.
    """

    available = policies if policies is not None else build_policies()
    try:
        return available[name]
    except KeyError:
        raise ValidationAppError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: '{name}'",
            details={"known_policies": sorted(available)},
        ) from None
