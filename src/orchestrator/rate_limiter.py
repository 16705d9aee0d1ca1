"""Per-provider admission control."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateLimiterState:
    """Snapshot of a bucket."""
    capacity: int
    window_seconds: float
    tokens: float
    last_refill: float


class RateLimiter:
    """
    Token bucket rate limiter.

    The bucket holds at most `capacity` tokens and refills at
    capacity / window_seconds tokens per second. `try_acquire` never waits:
    it takes a token if one is available and reports whether it did.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            capacity: Maximum admissions per window (bucket size)
            window_seconds: Window over which capacity refills
            clock: Monotonic time source
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.capacity = capacity
        self.window_seconds = window_seconds
        self.rate = capacity / window_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._last_update = clock()
        self._lock = asyncio.Lock()

    async def try_acquire(self, tokens: int = 1) -> bool:
        """Take tokens if available. Returns False instead of waiting."""
        async with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_update)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    def seconds_until_available(self, tokens: int = 1) -> float:
        """Approximate wait before `tokens` would be admitted."""
        missing = tokens - self.available_tokens
        return max(0.0, missing / self.rate)

    @property
    def available_tokens(self) -> float:
        """Get current available tokens (approximate, no refill side effect)."""
        elapsed = max(0.0, self._clock() - self._last_update)
        return min(self.capacity, self._tokens + elapsed * self.rate)

    def state(self) -> RateLimiterState:
        return RateLimiterState(
            capacity=self.capacity,
            window_seconds=self.window_seconds,
            tokens=self._tokens,
            last_refill=self._last_update,
        )

    def status(self) -> dict:
        """Stats view for GET_STATS."""
        return {
            "capacity": self.capacity,
            "window_seconds": self.window_seconds,
            "available": int(self.available_tokens),
            "retry_after_seconds": round(self.seconds_until_available(), 3),
        }
