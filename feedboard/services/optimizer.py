"""
Optimizer - Owns one WorkerPool per service and applies process tuning.

Pools are created lazily on first use, exactly once per name. On
construction the optimizer scales the garbage collector's generation-0
threshold by ``gc_percent``; once started it periodically samples process
memory and forces collection above ``max_memory_mb``. This is best-effort
containment: it never rejects or cancels work.
"""

import asyncio
import contextlib
import gc
import os
import threading
from typing import Any

import psutil
from loguru import logger

from feedboard.config import PerformanceConfig
from feedboard.services.pool import WorkerPool

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_GC_PERCENT = 100
DEFAULT_MONITOR_INTERVAL = 30.0

# Generation-0 threshold before any tuning
_BASE_GC_THRESHOLD = gc.get_threshold()[0]


def default_max_workers() -> int:
    return (os.cpu_count() or 1) * 2


class Optimizer:
    """
    Registry of per-service worker pools.

    Usage:
        optimizer = Optimizer(PerformanceConfig(max_workers=8))
        optimizer.start()

        pool = optimizer.get_or_create_pool("weibo")
        pool.submit(job)

        await optimizer.stop()
    """

    def __init__(self, config: PerformanceConfig | None = None):
        config = config or PerformanceConfig()
        self.max_workers = config.max_workers or default_max_workers()
        self.queue_size = config.queue_size or DEFAULT_QUEUE_SIZE
        self.gc_percent = config.gc_percent or DEFAULT_GC_PERCENT
        self.max_memory_mb = config.max_memory_mb
        self.monitor_interval = config.monitor_interval or DEFAULT_MONITOR_INTERVAL

        self._pools: dict[str, WorkerPool] = {}
        self._lock = threading.Lock()
        self._monitor_task: asyncio.Task[None] | None = None
        self._process = psutil.Process()
        self.last_memory_mb: float = 0.0
        self.forced_collections = 0

        self._apply_system_optimizations()

    def _apply_system_optimizations(self) -> None:
        threshold = max(1, _BASE_GC_THRESHOLD * self.gc_percent // 100)
        _, gen1, gen2 = gc.get_threshold()
        gc.set_threshold(threshold, gen1, gen2)
        logger.info(
            f"Optimizer: gc threshold {threshold} ({self.gc_percent}%), "
            f"{self.max_workers} workers per service, queue {self.queue_size}"
        )

    def get_or_create_pool(self, name: str) -> WorkerPool:
        """Return the running pool for ``name``, creating it on first use."""
        pool = self._pools.get(name)
        if pool is not None:
            return pool

        with self._lock:
            # Double-checked: another caller may have created it meanwhile
            pool = self._pools.get(name)
            if pool is None:
                pool = WorkerPool(name, self.max_workers, self.queue_size)
                pool.start()
                self._pools[name] = pool
                logger.info(f"Created worker pool for {name}")
        return pool

    def get_pool(self, name: str) -> WorkerPool | None:
        return self._pools.get(name)

    def start(self) -> None:
        """Start the memory monitor. Must run inside an event loop."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor_memory())

    async def stop(self) -> None:
        """Stop the memory monitor and every pool."""
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
            self._monitor_task = None

        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.stop()
        logger.info(f"Optimizer stopped {len(pools)} worker pools")

    def check_memory(self) -> float:
        """Sample RSS; collect garbage if above the ceiling. Returns MB."""
        current_mb = self._process.memory_info().rss / 1024 / 1024
        self.last_memory_mb = current_mb

        if self.max_memory_mb > 0 and current_mb > self.max_memory_mb:
            logger.warning(
                f"Memory usage {current_mb:.1f}MB above {self.max_memory_mb}MB, "
                f"forcing garbage collection"
            )
            gc.collect()
            gc.collect()
            self.forced_collections += 1
        return current_mb

    async def _monitor_memory(self) -> None:
        while True:
            await asyncio.sleep(self.monitor_interval)
            try:
                self.check_memory()
            except psutil.Error as e:
                logger.error(f"Memory check failed: {e}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "pools": {name: pool.get_stats().to_dict() for name, pool in self._pools.items()},
            "memory_mb": round(self.last_memory_mb, 1),
            "max_memory_mb": self.max_memory_mb,
            "forced_collections": self.forced_collections,
        }
