"""
Shared test fixtures.

FakeClient stands in for an upstream integration: it answers from a queue
of scripted outcomes (responses or exceptions) with an optional delay and
counts every call.
"""

import asyncio
from typing import Any

import pytest
from pydantic_core import to_json

from feedboard.config import AppConfig, APISourceConfig, PerformanceConfig, RateLimitConfig
from feedboard.services.client import APIClient
from feedboard.services.manager import ServiceManager
from feedboard.services.types import APIRequest, APIResponse


def json_response(data: Any, status_code: int = 200) -> APIResponse:
    return APIResponse(status_code=status_code, body=to_json(data))


class FakeClient(APIClient):
    """Scripted APIClient."""

    def __init__(
        self,
        name: str,
        outcomes: list[APIResponse | Exception] | None = None,
        default: APIResponse | Exception | None = None,
        delay: float = 0.0,
        routes: dict[str, Any] | None = None,
    ):
        self._name = name
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else json_response({"service": name})
        self.delay = delay
        self.routes = routes or {}
        self.calls: list[APIRequest] = []
        self.healthy = True
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def base_url(self) -> str:
        return f"https://{self._name}.example.com"

    async def request(self, req: APIRequest) -> APIResponse:
        self.calls.append(req)
        if self.delay:
            await asyncio.sleep(self.delay)

        if req.path in self.routes:
            outcome = self.routes[req.path]
        elif self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = self.default

        if isinstance(outcome, Exception):
            raise outcome
        if not isinstance(outcome, APIResponse):
            outcome = json_response(outcome)
        return outcome

    async def is_healthy(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True


def make_config(
    sources: dict[str, list[str]] | None = None,
    default_limit: int = 100,
    limits: dict[str, int] | None = None,
    max_workers: int = 2,
    queue_size: int = 10,
) -> AppConfig:
    """Build an AppConfig; ``sources`` maps service name to its fallbacks."""
    sources = sources if sources is not None else {"primary": []}
    return AppConfig(
        api_sources={
            name: APISourceConfig(base_url=f"https://{name}.example.com", fallbacks=fallbacks)
            for name, fallbacks in sources.items()
        },
        rate_limit=RateLimitConfig(default_limit=default_limit, services=limits or {}),
        performance=PerformanceConfig(max_workers=max_workers, queue_size=queue_size),
    )


@pytest.fixture
async def manager_factory():
    """Create ServiceManagers that are closed after the test."""
    managers: list[ServiceManager] = []

    def factory(config: AppConfig, clients: list[APIClient]) -> ServiceManager:
        manager = ServiceManager(config, clients=clients)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        await manager.aclose()
