"""Per-client throttling for the authorize and token endpoints.

Each client IP owns a token bucket that refills continuously. The app factory
builds one limiter from ``auth_rate_limit_per_minute`` and keeps it on
``app.state.auth_limiter``; apps without one are not throttled.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

__all__ = ["RateLimiter", "RateLimitInfo", "per_minute"]


@dataclass
class _Bucket:
    tokens: float
    updated: float


@dataclass(frozen=True)
class RateLimitInfo:
    """Outcome of one ``check()``; ``retry_after`` is in seconds."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: float

    def headers(self) -> dict[str, str]:
        wait = str(math.ceil(self.retry_after))
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": wait,
        }
        if not self.allowed:
            headers["Retry-After"] = wait
        return headers


class RateLimiter:
    """Token bucket per key: ``capacity`` burst, refilled at ``rate`` tokens/s."""

    def __init__(
        self,
        rate: float,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        """Take one token from *key*'s bucket when one is available."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.setdefault(key, _Bucket(float(self.capacity), now))
            bucket.tokens = min(
                float(self.capacity), bucket.tokens + (now - bucket.updated) * self.rate
            )
            bucket.updated = now

            if bucket.tokens < 1.0:
                wait = self._seconds_for(1.0 - bucket.tokens)
                return RateLimitInfo(False, self.capacity, 0, wait)

            bucket.tokens -= 1.0
            return RateLimitInfo(
                True,
                self.capacity,
                int(bucket.tokens),
                self._seconds_for(self.capacity - bucket.tokens),
            )

    def _seconds_for(self, tokens: float) -> float:
        if self.rate <= 0:
            return 1.0
        return tokens / self.rate

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Drop buckets untouched for *max_age* seconds; returns how many."""
        cutoff = self._clock() - max_age
        with self._lock:
            idle = [key for key, bucket in self._buckets.items() if bucket.updated < cutoff]
            for key in idle:
                del self._buckets[key]
        return len(idle)


def per_minute(limit: int) -> RateLimiter | None:
    """*limit* requests per minute with a burst of the same size; None disables."""
    if limit <= 0:
        return None
    return RateLimiter(rate=limit / 60.0, capacity=limit)
