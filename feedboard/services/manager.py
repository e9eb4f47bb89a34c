"""
ServiceManager - Routes named-service requests through admission control,
the service's worker pool, and its fallback chain.

Request flow:
    resolve client -> rate limit -> pool submit -> await (deadline) ->
    on upstream failure: fallbacks in declared order -> response or error

Caching is the caller's decision; the manager always produces a fresh
result or fails.
"""

import asyncio
import threading
from typing import Any, Iterable

from loguru import logger

from feedboard.config import AppConfig
from feedboard.services.client import APIClient, HTTPClient
from feedboard.services.errors import (
    AllServicesFailedError,
    ContextCancelledError,
    QueueFullError,
    RateLimitError,
    ServiceError,
    ServiceNotFoundError,
    UpstreamError,
)
from feedboard.services.monitor import MetricsSnapshot, Monitor
from feedboard.services.optimizer import Optimizer
from feedboard.services.pool import Job
from feedboard.services.ratelimit import TokenBucketLimiter
from feedboard.services.types import APIRequest, APIResponse


class ServiceManager:
    """
    Orchestrates requests to upstream services.

    Usage:
        async with ServiceManager(load_config("config.yaml")) as manager:
            resp = await manager.request_with_fallback(
                "bilibili",
                APIRequest(path="/x/space/arc/search", params={"mid": "123"}),
                timeout=10.0,
            )
            videos = resp.json()
    """

    def __init__(
        self,
        config: AppConfig,
        clients: Iterable[APIClient] | None = None,
        monitor: Monitor | None = None,
        limiter: TokenBucketLimiter | None = None,
        optimizer: Optimizer | None = None,
        metrics_interval: float = 30.0,
    ):
        self.config = config
        self.monitor = monitor or Monitor()
        self.limiter = limiter or TokenBucketLimiter(config.rate_limit)
        self.optimizer = optimizer or Optimizer(config.performance)
        self._metrics_interval = metrics_interval

        self._clients: dict[str, APIClient] = {}
        self._lock = threading.Lock()

        if clients is None:
            clients = [
                HTTPClient(name, source) for name, source in config.api_sources.items()
            ]
        for client in clients:
            self.register_client(client)

    def register_client(self, client: APIClient) -> None:
        """Register or replace the client for ``client.name``."""
        with self._lock:
            self._clients[client.name] = client
        logger.debug(f"Registered service client: {client.name}")

    def get_client(self, service_name: str) -> APIClient:
        client = self._clients.get(service_name)
        if client is None:
            raise ServiceNotFoundError(service_name)
        return client

    def services(self) -> list[str]:
        return sorted(self._clients)

    def fallbacks_for(self, service_name: str) -> list[str]:
        source = self.config.api_sources.get(service_name)
        return list(source.fallbacks) if source else []

    async def request_with_fallback(
        self,
        service_name: str,
        request: APIRequest,
        timeout: float | None = None,
    ) -> APIResponse:
        """
        Fetch ``request`` from ``service_name``, falling back on upstream failure.

        Args:
            service_name: Registered service to call first
            request: Provider-agnostic request
            timeout: Overall deadline in seconds, shared by the primary
                attempt and every fallback

        Returns:
            The first successful response

        Raises:
            ServiceNotFoundError: No client for ``service_name``
            RateLimitError: Token bucket denied the request
            QueueFullError: The service's worker pool is saturated
            ContextCancelledError: The deadline passed first
            AllServicesFailedError: Primary and every fallback failed
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + timeout if timeout is not None else None

        failed = True
        try:
            response = await self._request_primary(service_name, request, deadline, timeout)
            failed = False
            return response
        except UpstreamError as e:
            primary_error = e
        finally:
            self.monitor.record_api_request(service_name, loop.time() - start, failed)

        logger.warning(f"Service {service_name} failed ({primary_error}), trying fallbacks")
        return await self._request_fallbacks(
            service_name, request, deadline, timeout, primary_error
        )

    async def _request_primary(
        self,
        service_name: str,
        request: APIRequest,
        deadline: float | None,
        timeout: float | None,
    ) -> APIResponse:
        client = self.get_client(service_name)

        if not self.limiter.allow(service_name):
            self.monitor.record_rejection(service_name, RateLimitError.reason)
            logger.warning(f"Rate limit exceeded for service: {service_name}")
            raise RateLimitError(service_name)

        pool = self.optimizer.get_or_create_pool(service_name)
        job: Job[APIResponse] = Job(
            function=lambda: self._call(client, service_name, request),
            deadline=deadline,
        )
        try:
            pool.submit(job)
        except QueueFullError:
            self.monitor.record_rejection(service_name, QueueFullError.reason)
            logger.warning(f"Worker pool queue full for service: {service_name}")
            raise

        remaining = self._remaining(deadline)
        try:
            done, _ = await asyncio.wait({job.result}, timeout=remaining)
        except asyncio.CancelledError:
            job.result.cancel()
            raise
        if not done:
            # The job keeps running; its outcome is discarded
            job.result.cancel()
            raise ContextCancelledError(service_name, timeout)
        return job.result.result()

    async def _request_fallbacks(
        self,
        service_name: str,
        request: APIRequest,
        deadline: float | None,
        timeout: float | None,
        error: Exception,
    ) -> APIResponse:
        loop = asyncio.get_running_loop()
        attempted = [service_name]
        last_error = error

        for fallback in self.fallbacks_for(service_name):
            client = self._clients.get(fallback)
            if client is None:
                logger.warning(f"Fallback {fallback} for {service_name} is not registered")
                continue

            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise ContextCancelledError(service_name, timeout)

            attempted.append(fallback)
            start = loop.time()
            try:
                response = await asyncio.wait_for(
                    self._call(client, fallback, request), remaining
                )
            except asyncio.TimeoutError:
                self.monitor.record_api_request(fallback, loop.time() - start, True)
                raise ContextCancelledError(service_name, timeout) from None
            except UpstreamError as e:
                self.monitor.record_api_request(fallback, loop.time() - start, True)
                logger.warning(f"Fallback {fallback} for {service_name} failed: {e}")
                last_error = e
                continue

            self.monitor.record_api_request(fallback, loop.time() - start, False)
            self.monitor.record_fallback(service_name, fallback)
            logger.info(f"Served {service_name} request from fallback {fallback}")
            return response

        raise AllServicesFailedError(service_name, attempted, last_error)

    async def _call(
        self, client: APIClient, service_name: str, request: APIRequest
    ) -> APIResponse:
        """Run the client call, normalising every failure to ``UpstreamError``."""
        try:
            response = await client.request(request)
        except ServiceError as e:
            if isinstance(e, UpstreamError):
                raise
            raise UpstreamError(str(e), service_id=service_name) from e
        except Exception as e:
            raise UpstreamError(
                f"{type(e).__name__}: {e}", service_id=service_name
            ) from e

        if not response.ok:
            raise UpstreamError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                service_id=service_name,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return max(0.0, deadline - asyncio.get_running_loop().time())

    # Lifecycle and status

    def start(self) -> None:
        """Start background monitoring. Must run inside an event loop."""
        self.optimizer.start()
        self.monitor.add_collector("rate_limits", self.limiter.get_status)
        self.monitor.add_collector("pools", self.optimizer.get_stats)
        self.monitor.start(self._metrics_interval)
        logger.info(f"ServiceManager started with {len(self._clients)} services")

    async def aclose(self) -> None:
        await self.monitor.stop()
        await self.optimizer.stop()
        for client in list(self._clients.values()):
            await client.aclose()
        logger.info("ServiceManager closed")

    async def __aenter__(self) -> "ServiceManager":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def get_metrics(self) -> MetricsSnapshot:
        return self.monitor.get_metrics()

    async def health_check(self) -> dict[str, bool]:
        """Probe every registered client concurrently."""
        clients = list(self._clients.values())
        results = await asyncio.gather(
            *(client.is_healthy() for client in clients), return_exceptions=True
        )
        return {
            client.name: result is True for client, result in zip(clients, results)
        }

    def get_status(self) -> dict[str, Any]:
        return {
            "services": self.services(),
            "rate_limits": self.limiter.get_status(),
            "optimizer": self.optimizer.get_stats(),
        }
