"""
Benchmarker - Concurrent load runner for widget and service calls.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

TestFunc = Callable[[], Awaitable[Any]]


@dataclass
class BenchmarkConfig:
    name: str
    concurrency: int = 10
    duration: float = 30.0  # seconds
    request_count: int = 0  # 0 = run until duration elapses
    warmup: float = 0.0  # seconds


@dataclass
class BenchmarkResult:
    name: str
    total_requests: int = 0
    success_requests: int = 0
    failed_requests: int = 0
    total_time: float = 0.0
    average_time: float = 0.0
    min_time: float = 0.0
    max_time: float = 0.0
    requests_per_sec: float = 0.0
    error_rate: float = 0.0  # percent
    _times: list[float] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total_requests": self.total_requests,
            "success_requests": self.success_requests,
            "failed_requests": self.failed_requests,
            "total_time": round(self.total_time, 3),
            "average_time": round(self.average_time, 4),
            "min_time": round(self.min_time, 4),
            "max_time": round(self.max_time, 4),
            "requests_per_sec": round(self.requests_per_sec, 2),
            "error_rate": round(self.error_rate, 2),
        }


class Benchmarker:
    """
    Runs a coroutine function under concurrent load.

    Usage:
        bench = Benchmarker(BenchmarkConfig(name="gitee widget", concurrency=5, duration=10))
        result = await bench.run(lambda: widget.load(manager, cache))
        bench.log_result(result)
    """

    def __init__(self, config: BenchmarkConfig):
        self.config = config
        self._results: list[BenchmarkResult] = []

    async def run(self, func: TestFunc) -> BenchmarkResult:
        if self.config.warmup > 0:
            logger.info(f"Warming up for {self.config.warmup}s...")
            await self._warmup(func)

        logger.info(
            f"Starting benchmark '{self.config.name}': concurrency "
            f"{self.config.concurrency}, duration {self.config.duration}s"
        )
        result = BenchmarkResult(name=self.config.name)
        start = time.perf_counter()
        end = start + self.config.duration
        started = 0

        async def worker() -> None:
            nonlocal started
            while time.perf_counter() < end:
                if self.config.request_count and started >= self.config.request_count:
                    return
                started += 1
                request_start = time.perf_counter()
                try:
                    await func()
                except Exception:
                    result.failed_requests += 1
                else:
                    result.success_requests += 1
                result.total_requests += 1
                result._times.append(time.perf_counter() - request_start)

        await asyncio.gather(*(worker() for _ in range(self.config.concurrency)))

        result.total_time = time.perf_counter() - start
        if result._times:
            result.average_time = sum(result._times) / len(result._times)
            result.min_time = min(result._times)
            result.max_time = max(result._times)
        if result.total_time > 0:
            result.requests_per_sec = result.total_requests / result.total_time
        if result.total_requests:
            result.error_rate = result.failed_requests / result.total_requests * 100

        self._results.append(result)
        return result

    async def _warmup(self, func: TestFunc) -> None:
        end = time.perf_counter() + self.config.warmup

        async def worker() -> None:
            while time.perf_counter() < end:
                try:
                    await func()
                except Exception as e:
                    logger.debug(f"Warmup call failed: {e}")
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(self.config.concurrency)))

    def results(self) -> list[BenchmarkResult]:
        return list(self._results)

    def log_result(self, result: BenchmarkResult) -> None:
        logger.info(
            f"Benchmark '{result.name}': {result.total_requests} requests "
            f"({result.success_requests} ok, {result.failed_requests} failed) in "
            f"{result.total_time:.2f}s | avg {result.average_time * 1000:.1f}ms, "
            f"min {result.min_time * 1000:.1f}ms, max {result.max_time * 1000:.1f}ms | "
            f"{result.requests_per_sec:.2f} req/s, error rate {result.error_rate:.2f}%"
        )
