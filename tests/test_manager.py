"""
Tests for ServiceManager request orchestration: admission, backpressure,
deadlines, cancellation and the fallback chain, plus the metrics each path
records.
"""

import asyncio
import time

import pytest

from feedboard.services.errors import (
    AllServicesFailedError,
    ContextCancelledError,
    QueueFullError,
    RateLimitError,
    ServiceNotFoundError,
    UpstreamError,
)
from feedboard.services.manager import ServiceManager
from feedboard.services.types import APIRequest
from tests.conftest import FakeClient, json_response, make_config


REQUEST = APIRequest(path="/items")


class TestRequestWithFallback:
    @pytest.mark.asyncio
    async def test_success_returns_primary_response(self, manager_factory):
        client = FakeClient("primary", outcomes=[json_response({"ok": True})])
        manager = manager_factory(make_config(), [client])

        resp = await manager.request_with_fallback("primary", REQUEST, timeout=1.0)

        assert resp.json() == {"ok": True}
        assert client.calls == [REQUEST]
        stats = manager.get_metrics().services["primary"]
        assert (stats.count, stats.error_count) == (1, 0)

    @pytest.mark.asyncio
    async def test_unknown_service(self, manager_factory):
        manager = manager_factory(make_config(), [FakeClient("primary")])

        with pytest.raises(ServiceNotFoundError):
            await manager.request_with_fallback("missing", REQUEST)

    @pytest.mark.asyncio
    async def test_rate_limited_request_skips_fallbacks(self, manager_factory):
        config = make_config(
            sources={"primary": ["backup"], "backup": []}, limits={"primary": 1}
        )
        primary = FakeClient("primary")
        backup = FakeClient("backup")
        manager = manager_factory(config, [primary, backup])

        await manager.request_with_fallback("primary", REQUEST)
        with pytest.raises(RateLimitError):
            await manager.request_with_fallback("primary", REQUEST)

        assert len(primary.calls) == 1
        assert backup.calls == []
        metrics = manager.get_metrics()
        assert metrics.rejections == {"primary": {"rate_limited": 1}}
        assert (metrics.services["primary"].count, metrics.services["primary"].error_count) == (2, 1)
        assert "backup" not in metrics.services

    @pytest.mark.asyncio
    async def test_queue_full_rejects_immediately(self, manager_factory):
        config = make_config(max_workers=1, queue_size=1)
        client = FakeClient("primary", delay=0.1)
        manager = manager_factory(config, [client])

        running = asyncio.create_task(manager.request_with_fallback("primary", REQUEST))
        await asyncio.sleep(0.01)
        dispatched = asyncio.create_task(manager.request_with_fallback("primary", REQUEST))
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(manager.request_with_fallback("primary", REQUEST))
        await asyncio.sleep(0.01)

        start = time.perf_counter()
        with pytest.raises(QueueFullError):
            await manager.request_with_fallback("primary", REQUEST)
        assert time.perf_counter() - start < 0.05

        results = await asyncio.gather(running, dispatched, queued)
        assert all(resp.ok for resp in results)
        assert manager.get_metrics().rejections == {"primary": {"queue_full": 1}}

    @pytest.mark.asyncio
    async def test_deadline_returns_context_cancelled_promptly(self, manager_factory):
        config = make_config(sources={"primary": ["backup"], "backup": []})
        backup = FakeClient("backup")
        manager = manager_factory(config, [FakeClient("primary", delay=1.0), backup])

        start = time.perf_counter()
        with pytest.raises(ContextCancelledError):
            await manager.request_with_fallback("primary", REQUEST, timeout=0.01)

        assert time.perf_counter() - start < 0.5
        assert backup.calls == []
        assert manager.get_metrics().services["primary"].error_count == 1

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, manager_factory):
        manager = manager_factory(make_config(), [FakeClient("primary", delay=1.0)])

        task = asyncio.create_task(manager.request_with_fallback("primary", REQUEST))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert manager.get_metrics().services["primary"].error_count == 1

    @pytest.mark.asyncio
    async def test_fallbacks_tried_in_order(self, manager_factory):
        config = make_config(sources={"a": ["b", "c"], "b": [], "c": []})
        a = FakeClient("a", default=json_response({"err": 1}, status_code=500))
        b = FakeClient("b", default=UpstreamError("b down", service_id="b"))
        c = FakeClient("c", default=json_response({"from": "c"}))
        manager = manager_factory(config, [a, b, c])

        resp = await manager.request_with_fallback("a", REQUEST, timeout=1.0)

        assert resp.json() == {"from": "c"}
        assert [len(x.calls) for x in (a, b, c)] == [1, 1, 1]

        metrics = manager.get_metrics()
        assert (metrics.services["a"].count, metrics.services["a"].error_count) == (1, 1)
        assert (metrics.services["b"].count, metrics.services["b"].error_count) == (1, 1)
        assert (metrics.services["c"].count, metrics.services["c"].error_count) == (1, 0)
        assert metrics.fallbacks == {"a": {"c": 1}}

    @pytest.mark.asyncio
    async def test_first_successful_fallback_wins(self, manager_factory):
        config = make_config(sources={"a": ["b", "c"], "b": [], "c": []})
        c = FakeClient("c")
        manager = manager_factory(
            config,
            [FakeClient("a", default=UpstreamError("a down")), FakeClient("b"), c],
        )

        resp = await manager.request_with_fallback("a", REQUEST)

        assert resp.json() == {"service": "b"}
        assert c.calls == []

    @pytest.mark.asyncio
    async def test_all_services_failed(self, manager_factory):
        config = make_config(sources={"a": ["ghost", "b"], "b": []})
        manager = manager_factory(
            config,
            [
                FakeClient("a", default=UpstreamError("a down")),
                FakeClient("b", default=json_response({}, status_code=502)),
            ],
        )

        with pytest.raises(AllServicesFailedError) as exc_info:
            await manager.request_with_fallback("a", REQUEST)

        error = exc_info.value
        assert error.attempted == ["a", "b"]
        assert isinstance(error.last_error, UpstreamError)
        assert error.last_error.status_code == 502
        assert manager.get_metrics().fallbacks == {}

    @pytest.mark.asyncio
    async def test_error_status_without_fallbacks(self, manager_factory):
        manager = manager_factory(
            make_config(),
            [FakeClient("primary", default=json_response({"msg": "nope"}, status_code=404))],
        )

        with pytest.raises(AllServicesFailedError) as exc_info:
            await manager.request_with_fallback("primary", REQUEST)

        assert exc_info.value.attempted == ["primary"]
        assert exc_info.value.last_error.status_code == 404

    @pytest.mark.asyncio
    async def test_unexpected_client_exception_is_upstream_failure(self, manager_factory):
        config = make_config(sources={"a": ["b"], "b": []})
        manager = manager_factory(
            config, [FakeClient("a", default=ValueError("bad json")), FakeClient("b")]
        )

        resp = await manager.request_with_fallback("a", REQUEST)

        assert resp.json() == {"service": "b"}

    @pytest.mark.asyncio
    async def test_deadline_shared_with_fallbacks(self, manager_factory):
        config = make_config(sources={"a": ["b"], "b": []})
        manager = manager_factory(
            config,
            [FakeClient("a", default=UpstreamError("a down")), FakeClient("b", delay=1.0)],
        )

        start = time.perf_counter()
        with pytest.raises(ContextCancelledError):
            await manager.request_with_fallback("a", REQUEST, timeout=0.05)

        assert time.perf_counter() - start < 0.5
        assert manager.get_metrics().services["b"].error_count == 1


class TestManagerLifecycle:
    @pytest.mark.asyncio
    async def test_health_check(self, manager_factory):
        sick = FakeClient("sick")
        sick.healthy = False
        manager = manager_factory(make_config(), [FakeClient("well"), sick])

        assert await manager.health_check() == {"well": True, "sick": False}

    @pytest.mark.asyncio
    async def test_context_manager_closes_clients(self):
        client = FakeClient("primary")

        async with ServiceManager(make_config(), clients=[client]) as manager:
            await manager.request_with_fallback("primary", REQUEST)
            assert manager.monitor.running

        assert client.closed
        assert not manager.monitor.running

    @pytest.mark.asyncio
    async def test_status(self, manager_factory):
        manager = manager_factory(make_config(), [FakeClient("primary")])
        await manager.request_with_fallback("primary", REQUEST)

        status = manager.get_status()

        assert status["services"] == ["primary"]
        assert status["rate_limits"]["primary"]["capacity"] == 100
        assert "primary" in status["optimizer"]["pools"]

    def test_builds_http_clients_from_config(self):
        manager = ServiceManager(make_config(sources={"gitee": [], "weibo": []}))

        assert manager.services() == ["gitee", "weibo"]
        assert manager.get_client("gitee").base_url == "https://gitee.example.com"
