"""In-memory fixed-window limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock guards every read-check-increment and the sweep.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from ratekeeper.adapters.rate_limit.base import AbstractLimitStore, CounterEntry, RateLimitDecision
from ratekeeper.core.policies import RateLimitPolicy

logger = logging.getLogger(__name__)


class InMemoryLimitStore(AbstractLimitStore):
    """Fixed-window counters keyed by policy name and caller identifier.

    A window opens on the first attempt of a key and lasts ``policy.window_ms``.
    Once it has ended the entry is replaced on the next attempt, and a
    background sweep drops entries of callers that went quiet.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 300.0,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval_seconds: Delay between two background sweeps.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._lock = threading.RLock()
        self._entries: dict[str, CounterEntry] = {}
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> InMemoryLimitStore:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    @staticmethod
    def _key(identifier: str, policy: RateLimitPolicy) -> str:
        return f"{policy.name}:{identifier}"

    def attempt(self, identifier: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Register one attempt and decide whether it is admitted.

        Rejected attempts are counted too, so a caller hammering a saturated
        key keeps incrementing it until the window rolls over.

        Raises:
            ValueError: If identifier is empty.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        key = self._key(identifier, policy)

        with self._lock:
            now_ms = self._now_ms()
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now_ms):
                entry = CounterEntry(count=0, window_reset_at_ms=now_ms + policy.window_ms)
                self._entries[key] = entry

            entry.count += 1
            reset_at_ms = int(entry.window_reset_at_ms)

            if entry.count > policy.max_requests:
                retry_after = max(0, math.ceil((entry.window_reset_at_ms - now_ms) / 1000))
                return RateLimitDecision(
                    allowed=False,
                    limit=policy.max_requests,
                    remaining=0,
                    reset_at_ms=reset_at_ms,
                    retry_after_seconds=retry_after,
                )

            return RateLimitDecision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests - entry.count,
                reset_at_ms=reset_at_ms,
            )

    def peek(self, identifier: str, policy: RateLimitPolicy) -> CounterEntry | None:
        with self._lock:
            entry = self._entries.get(self._key(identifier, policy))
            if entry is None or entry.is_expired(self._now_ms()):
                return None
            return CounterEntry(count=entry.count, window_reset_at_ms=entry.window_reset_at_ms)

    def reset(self, identifier: str | None = None, policy: RateLimitPolicy | None = None) -> None:
        """Forget one counter, or every counter when called without arguments."""
        with self._lock:
            if identifier is None or policy is None:
                self._entries.clear()
                return
            self._entries.pop(self._key(identifier, policy), None)

    def sweep(self) -> int:
        """Delete every entry whose window has ended.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now_ms = self._now_ms()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now_ms)]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)

        if expired:
            logger.debug(
                "rate_limit.sweep",
                extra={"removed": len(expired), "entries": remaining},
            )
        return len(expired)

    def start(self) -> None:
        """Run sweep() on a daemon thread every sweep interval."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="rate-limit-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.info(
            "rate_limit.sweeper_started",
            extra={"interval_s": self._sweep_interval},
        )

    def stop(self) -> None:
        """Stop the sweep thread; safe to call when it was never started."""
        self._stop_event.set()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and sweeper.is_alive():
            sweeper.join(timeout=2.0)
            logger.info("rate_limit.sweeper_stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("rate_limit.sweep_failed")
