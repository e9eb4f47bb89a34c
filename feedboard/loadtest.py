"""
Widget load test.

Runs every configured widget under concurrent load through the full request
path (rate limiter, worker pool, fallbacks) and logs a summary per widget.

Usage:
    feedboard-benchmark --config config.yaml --concurrency 5 --duration 10
"""

import argparse
import asyncio
import sys

from loguru import logger

from feedboard.config import AppConfig, ConfigError, load_config
from feedboard.datasource import BaseWidget, default_registry
from feedboard.services.benchmark import BenchmarkConfig, BenchmarkResult, Benchmarker
from feedboard.services.cache import CacheStore, MemoryCache
from feedboard.services.errors import ServiceError
from feedboard.services.manager import ServiceManager
from feedboard.utils import setup_logging


def _load_func(
    widget: BaseWidget, manager: ServiceManager, cache: CacheStore, cached: bool
):
    async def load() -> None:
        data = await widget.load(manager, cache, force=not cached)
        if data.error:
            raise ServiceError(data.error, widget.api_source)

    return load


async def benchmark_widgets(
    config: AppConfig,
    concurrency: int = 5,
    duration: float = 10.0,
    request_count: int = 0,
    warmup: float = 0.0,
    cached: bool = False,
    manager: ServiceManager | None = None,
) -> list[BenchmarkResult]:
    """
    Benchmark each widget in ``config.widgets``.

    Without ``cached`` every call bypasses the widget cache so the upstream
    path is measured. A ``manager`` passed in is used as is and left open.
    """
    registry = default_registry()
    widgets = [registry.build(widget_config) for widget_config in config.widgets]
    cache = MemoryCache(max_size=config.cache.max_size, default_ttl=config.cache.ttl)

    owns_manager = manager is None
    if manager is None:
        manager = ServiceManager(config)
        manager.start()

    results: list[BenchmarkResult] = []
    try:
        for widget in widgets:
            bench = Benchmarker(
                BenchmarkConfig(
                    name=f"{widget.name} widget",
                    concurrency=concurrency,
                    duration=duration,
                    request_count=request_count,
                    warmup=warmup,
                )
            )
            result = await bench.run(_load_func(widget, manager, cache, cached))
            bench.log_result(result)
            results.append(result)
    finally:
        if owns_manager:
            await manager.aclose()
        await cache.close()

    metrics = manager.get_metrics()
    for service, reasons in metrics.rejections.items():
        logger.info(f"Rejections for {service}: {reasons}")
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load test feedboard widgets")
    parser.add_argument("--config", default="config.yaml", help="Path to config YAML")
    parser.add_argument("--concurrency", type=int, default=5)
    parser.add_argument("--duration", type=float, default=10.0, help="Seconds per widget")
    parser.add_argument("--requests", type=int, default=0, help="Stop after N calls per widget")
    parser.add_argument("--warmup", type=float, default=0.0, help="Warmup seconds")
    parser.add_argument("--cached", action="store_true", help="Serve from the widget cache")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    asyncio.run(
        benchmark_widgets(
            config,
            concurrency=args.concurrency,
            duration=args.duration,
            request_count=args.requests,
            warmup=args.warmup,
            cached=args.cached,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
