"""
Unit tests for TokenBucketLimiter.

A fake clock drives the lazy refill so window arithmetic is exact.
"""

import threading

import pytest

from feedboard.config import RateLimitConfig
from feedboard.services.ratelimit import DEFAULT_LIMIT, TokenBucketLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestTokenBucketLimiter:
    def test_admits_exactly_capacity_then_denies(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=5, window=60), clock=clock)

        results = [limiter.allow("gitee") for _ in range(6)]

        assert results == [True] * 5 + [False]

    def test_per_service_limit_overrides_default(self, clock):
        config = RateLimitConfig(default_limit=10, window=60, services={"weibo": 2})
        limiter = TokenBucketLimiter(config, clock=clock)

        assert [limiter.allow("weibo") for _ in range(3)] == [True, True, False]
        assert limiter.allow("gitee") is True
        assert limiter.get_status()["gitee"]["capacity"] == 10

    def test_services_are_isolated(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=1, window=60), clock=clock)

        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_zero_limit_uses_default(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=0, window=0), clock=clock)

        admitted = sum(limiter.allow("douyu") for _ in range(DEFAULT_LIMIT + 5))

        assert admitted == DEFAULT_LIMIT

    def test_no_refill_within_window(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=2, window=60), clock=clock)
        limiter.allow("s")
        limiter.allow("s")

        clock.advance(59.9)

        assert limiter.allow("s") is False

    def test_refills_after_full_window(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=2, window=60), clock=clock)
        limiter.allow("s")
        limiter.allow("s")
        assert limiter.allow("s") is False

        clock.advance(60)

        assert limiter.allow("s") is True
        assert limiter.allow("s") is True
        assert limiter.allow("s") is False

    def test_refill_never_exceeds_capacity(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=3, window=10), clock=clock)
        limiter.allow("s")

        clock.advance(1000)
        limiter.allow("s")

        status = limiter.get_status()["s"]
        assert status["tokens"] == 2
        assert status["tokens"] <= status["capacity"]

    def test_reset_restores_full_capacity(self, clock):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=2, window=60), clock=clock)
        limiter.allow("s")
        limiter.allow("s")

        limiter.reset("s")

        assert limiter.get_status()["s"]["tokens"] == 2
        assert limiter.allow("s") is True

    def test_reset_unknown_service_is_noop(self, clock):
        limiter = TokenBucketLimiter(clock=clock)

        limiter.reset("never-seen")

        assert limiter.get_status() == {}

    def test_concurrent_allow_never_over_admits(self):
        limiter = TokenBucketLimiter(RateLimitConfig(default_limit=50, window=3600))
        admitted = []
        lock = threading.Lock()

        def worker():
            count = sum(limiter.allow("shared") for _ in range(20))
            with lock:
                admitted.append(count)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(admitted) == 50
        assert limiter.get_status()["shared"]["tokens"] == 0
