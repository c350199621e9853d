"""Request pacing for venue REST APIs: async token bucket and 429 backoff."""

from __future__ import annotations

import asyncio
import time

MAX_BACKOFF_SEC = 30.0


class TokenBucket:
    """Refills ``rate`` tokens per second up to ``capacity`` (default two seconds' worth).

    Waiters sleep for exactly the deficit instead of polling; the lock keeps
    concurrent callers from over-drawing the same refill.
    """

    def __init__(self, rate: float = 10.0, capacity: int | None = None) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = capacity or max(1, int(rate * 2))
        self.tokens = float(self.capacity)
        self.updated = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
        self.updated = now

    async def acquire(self, n: int = 1) -> None:
        if n > self.capacity:
            raise ValueError(f"cannot take {n} tokens from a bucket of {self.capacity}")
        async with self._lock:
            self._refill()
            if self.tokens < n:
                await asyncio.sleep((n - self.tokens) / self.rate)
                self._refill()
            self.tokens -= n


def backoff_on_429(retries: int, retry_after: str | None = None, base_delay: float = 1.0) -> float:
    """Seconds to wait before retry number ``retries + 1``.

    A numeric Retry-After header wins; otherwise exponential from ``base_delay``.
    Both are capped at MAX_BACKOFF_SEC.
    """
    if retry_after:
        try:
            return min(max(float(retry_after), 0.0), MAX_BACKOFF_SEC)
        except ValueError:
            pass
    return min(base_delay * (2**retries), MAX_BACKOFF_SEC)
