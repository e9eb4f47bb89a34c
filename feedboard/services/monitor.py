"""
Monitor - Request, widget and process metrics.

Every record and read goes through a single lock. Averages use the
``(old + sample) / 2`` update, which weights recent samples heavily and is
approximate. ``get_metrics`` returns an independent snapshot.
"""

import asyncio
import contextlib
import threading
from datetime import datetime
from typing import Any, Callable

import psutil
from loguru import logger
from pydantic import BaseModel, Field


class RequestStats(BaseModel):
    """Counters for one service, widget, or the HTTP surface."""

    count: int = 0
    error_count: int = 0
    avg_latency: float = 0.0  # seconds

    def record(self, duration: float, is_error: bool) -> None:
        self.count += 1
        if is_error:
            self.error_count += 1
        if self.count == 1:
            self.avg_latency = duration
        else:
            self.avg_latency = (self.avg_latency + duration) / 2


class MetricsSnapshot(BaseModel):
    http: RequestStats = Field(default_factory=RequestStats)
    services: dict[str, RequestStats] = Field(default_factory=dict)
    widgets: dict[str, RequestStats] = Field(default_factory=dict)
    rejections: dict[str, dict[str, int]] = Field(default_factory=dict)
    fallbacks: dict[str, dict[str, int]] = Field(default_factory=dict)
    cache_hits: int = 0
    cache_misses: int = 0
    memory_bytes: int = 0
    task_count: int = 0
    collectors: dict[str, dict[str, Any]] = Field(default_factory=dict)
    last_updated: datetime | None = None


Collector = Callable[[], dict[str, Any]]


class Monitor:
    """
    Metrics accumulator with an optional periodic collection loop.

    Usage:
        monitor = Monitor()
        monitor.add_collector("cache", lambda: cache.get_stats().to_dict())
        monitor.start(interval=30)

        monitor.record_api_request("gitee", 0.12, is_error=False)
        snapshot = monitor.get_metrics()

        await monitor.stop()
    """

    def __init__(self):
        self._metrics = MetricsSnapshot()
        self._lock = threading.Lock()
        self._collectors: dict[str, Collector] = {}
        self._task: asyncio.Task[None] | None = None
        self._process = psutil.Process()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_collector(self, name: str, collector: Collector) -> None:
        """Register a callable whose dict result is stored under ``name``."""
        self._collectors[name] = collector

    def start(self, interval: float = 30.0) -> None:
        """Start periodic collection. Must run inside an event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(interval))
        logger.debug(f"Metrics monitor started (interval {interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("Metrics monitor stopped")

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.collect()

    def collect(self) -> None:
        """Run one collection pass. Collector failures are logged and skipped."""
        collected: dict[str, dict[str, Any]] = {}
        for name, collector in self._collectors.items():
            try:
                collected[name] = collector()
            except Exception as e:
                logger.error(f"Metrics collector '{name}' failed: {e}")

        try:
            memory = self._process.memory_info().rss
        except psutil.Error as e:
            logger.error(f"Failed to read process memory: {e}")
            memory = 0

        try:
            tasks = len(asyncio.all_tasks())
        except RuntimeError:
            tasks = 0

        with self._lock:
            self._metrics.collectors.update(collected)
            if memory:
                self._metrics.memory_bytes = memory
            self._metrics.task_count = tasks
            self._metrics.last_updated = datetime.now()

    def record_http_request(self, duration: float, is_error: bool) -> None:
        with self._lock:
            self._metrics.http.record(duration, is_error)

    def record_api_request(self, service: str, duration: float, is_error: bool) -> None:
        with self._lock:
            stats = self._metrics.services.setdefault(service, RequestStats())
            stats.record(duration, is_error)

    def record_widget_load(self, widget: str, duration: float, is_error: bool) -> None:
        with self._lock:
            stats = self._metrics.widgets.setdefault(widget, RequestStats())
            stats.record(duration, is_error)

    def record_rejection(self, service: str, reason: str) -> None:
        """Count a rate-limit or queue-full rejection, kept apart from upstream errors."""
        with self._lock:
            reasons = self._metrics.rejections.setdefault(service, {})
            reasons[reason] = reasons.get(reason, 0) + 1

    def record_fallback(self, service: str, served_by: str) -> None:
        with self._lock:
            served = self._metrics.fallbacks.setdefault(service, {})
            served[served_by] = served.get(served_by, 0) + 1

    def record_cache(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._metrics.cache_hits += 1
            else:
                self._metrics.cache_misses += 1

    def get_metrics(self) -> MetricsSnapshot:
        """Deep copy of the current metrics."""
        with self._lock:
            return self._metrics.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._metrics = MetricsSnapshot()
