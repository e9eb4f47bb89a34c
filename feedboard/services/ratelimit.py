"""
TokenBucketLimiter - Per-service admission control.

Each service name gets one token bucket, created on first use. Buckets refill
lazily: every ``allow`` call adds ``refill_rate`` tokens for each full window
elapsed since the last refill, capped at capacity. No timers, no I/O.

Denial is a normal outcome (``False``), not an error.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from feedboard.config import RateLimitConfig

DEFAULT_LIMIT = 60
DEFAULT_WINDOW = 60.0


@dataclass
class TokenBucket:
    """A single service's bucket. Invariant: 0 <= tokens <= capacity."""

    capacity: int
    tokens: int
    refill_rate: int
    window: float
    last_refill: float
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def consume(self, now: float) -> bool:
        """Refill for elapsed windows, then take one token if available."""
        with self._lock:
            windows = int((now - self.last_refill) // self.window)
            tokens_to_add = windows * self.refill_rate
            if tokens_to_add > 0:
                self.tokens = min(self.capacity, self.tokens + tokens_to_add)
                self.last_refill = now

            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def refill(self, now: float) -> None:
        with self._lock:
            self.tokens = self.capacity
            self.last_refill = now


class TokenBucketLimiter:
    """
    Token bucket rate limiter keyed by service name.

    Usage:
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=60))

        if not limiter.allow("bilibili"):
            raise RateLimitError("bilibili")
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._default_limit = self.config.default_limit or DEFAULT_LIMIT
        self._window = self.config.window or DEFAULT_WINDOW
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _limit_for(self, service: str) -> int:
        return self.config.services.get(service, self._default_limit)

    def _get_bucket(self, service: str) -> TokenBucket:
        bucket = self._buckets.get(service)
        if bucket is not None:
            return bucket

        with self._lock:
            # Double-checked: another caller may have created it meanwhile
            bucket = self._buckets.get(service)
            if bucket is None:
                limit = self._limit_for(service)
                bucket = TokenBucket(
                    capacity=limit,
                    tokens=limit,
                    refill_rate=limit,
                    window=self._window,
                    last_refill=self._clock(),
                )
                self._buckets[service] = bucket
                logger.debug(
                    f"Created token bucket for {service}: {limit} per {self._window}s"
                )
        return bucket

    def allow(self, service: str) -> bool:
        """Return True if a request to ``service`` is admitted now."""
        allowed = self._get_bucket(service).consume(self._clock())
        if not allowed:
            logger.debug(f"Rate limit reached for {service}")
        return allowed

    def reset(self, service: str) -> None:
        """Restore a bucket to full capacity. Unknown services are ignored."""
        with self._lock:
            bucket = self._buckets.get(service)
        if bucket is not None:
            bucket.refill(self._clock())
            logger.info(f"Rate limit bucket for {service} reset")

    def get_status(self) -> dict[str, dict[str, int]]:
        """Current token counts per service."""
        with self._lock:
            buckets = list(self._buckets.items())
        return {
            name: {"tokens": bucket.tokens, "capacity": bucket.capacity}
            for name, bucket in buckets
        }
