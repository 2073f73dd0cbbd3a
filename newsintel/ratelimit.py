"""Per-source token buckets.

Each bucket holds up to ``rate_per_minute`` tokens and refills
continuously at ``rate_per_minute / 60`` tokens per second.  A fetch
consumes one token; an empty bucket means the fetch is skipped for this
refresh (no waiting, no retry).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from .errors import ConfigError


class TokenBucket:
    """Thread-safe token bucket with an injectable monotonic clock."""

    def __init__(self, rate_per_minute: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        if rate_per_minute <= 0:
            raise ConfigError(f"rate_per_minute must be positive, got {rate_per_minute}")
        self.capacity = float(rate_per_minute)
        self.refill_per_s = rate_per_minute / 60.0
        self._clock = clock
        self._tokens = self.capacity
        self._last = clock()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_s)
        self._last = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take *tokens* if available; never blocks."""
        now = self._clock()
        with self._lock:
            self._refill(now)
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    @property
    def available(self) -> float:
        now = self._clock()
        with self._lock:
            self._refill(now)
            return self._tokens

    def __repr__(self) -> str:
        return f"TokenBucket(capacity={self.capacity:g}, available={self.available:.2f})"
