"""Token-bucket rate limiting for the relay endpoints.

Each bucket holds up to ``capacity`` tokens and refills continuously at
``refill_rate`` tokens per second; a request costs one token. Bursts up to
the capacity are allowed, and the refill rate caps the long-term average.

``/auth/start`` gets a tight bucket because every call allocates a session,
which makes it the cheapest way to exhaust the relay. ``/auth/poll`` is
expected to be hit every couple of seconds during a login, so its bucket
refills much faster.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """capacity is the burst size; refill_rate is tokens per second."""

    capacity: int = 10
    refill_rate: float = 1.0

    @property
    def seconds_to_full(self) -> float:
        return self.capacity / self.refill_rate


# 10 burst, then one token every 6 seconds: 10/minute sustained.
START_LIMIT = RateLimitConfig(capacity=10, refill_rate=1 / 6)
# 10 burst, then one token per second: 60/minute sustained.
POLL_LIMIT = RateLimitConfig(capacity=10, refill_rate=1.0)


class InMemoryRateLimiter:
    """Single-process token buckets keyed by an arbitrary string."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (tokens_remaining, last_refill, config)
        self._buckets: dict[str, tuple[float, float, RateLimitConfig]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                tokens = config.capacity - 1
                self._buckets[key] = (tokens, now, config)
                return RateLimitResult(
                    allowed=True,
                    remaining=int(tokens),
                    limit=config.capacity,
                    retry_after=0,
                )

            tokens, last_refill, _ = bucket
            elapsed = max(0.0, now - last_refill)
            tokens = min(config.capacity, tokens + elapsed * config.refill_rate)

            if tokens >= 1:
                tokens -= 1
                self._buckets[key] = (tokens, now, config)
                return RateLimitResult(
                    allowed=True,
                    remaining=int(tokens),
                    limit=config.capacity,
                    retry_after=0,
                )

            self._buckets[key] = (tokens, now, config)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=config.capacity,
                retry_after=(1 - tokens) / config.refill_rate,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def prune(self, now: float | None = None) -> int:
        """Drop buckets that have been idle long enough to be full again."""
        current = self._clock() if now is None else now
        with self._lock:
            idle = [
                key
                for key, (_, last_refill, config) in self._buckets.items()
                if current - last_refill >= config.seconds_to_full
            ]
            for key in idle:
                del self._buckets[key]
        return len(idle)
