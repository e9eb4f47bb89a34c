"""FastAPI surface for widget data, metrics and health."""

import time
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from feedboard.datasource.base import BaseWidget, WidgetData
from feedboard.datasource.scheduler import RefreshScheduler
from feedboard.services.cache import CacheStore
from feedboard.services.errors import (
    ContextCancelledError,
    RejectedError,
    ServiceError,
    ServiceNotFoundError,
)
from feedboard.services.manager import ServiceManager
from feedboard.services.monitor import MetricsSnapshot


def _status_for(error: ServiceError) -> int:
    if isinstance(error, ServiceNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, RejectedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(error, ContextCancelledError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_502_BAD_GATEWAY


class DashboardServer:
    """HTTP server exposing widgets and observability endpoints."""

    def __init__(
        self,
        manager: ServiceManager,
        cache: CacheStore,
        widgets: dict[str, BaseWidget[Any]] | None = None,
        scheduler: RefreshScheduler | None = None,
        timeout: float | None = 30.0,
    ):
        self.manager = manager
        self.cache = cache
        self.widgets = widgets or {}
        self.scheduler = scheduler
        self.timeout = timeout
        self.app = FastAPI(title="feedboard")

        self.app.middleware("http")(self.record_request)
        self.app.exception_handler(ServiceError)(self.handle_service_error)

        # Register routes
        self.app.get("/health")(self.health_check)
        self.app.get("/metrics", response_model=MetricsSnapshot)(self.metrics)
        self.app.get("/status")(self.get_status)
        self.app.get("/services/health")(self.services_health)
        self.app.post("/services/{name}/reset")(self.reset_service)
        self.app.get("/widgets")(self.list_widgets)
        self.app.get("/widgets/{name}", response_model=WidgetData)(self.get_widget)

    async def record_request(self, request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self.manager.monitor.record_http_request(time.perf_counter() - start, True)
            raise
        self.manager.monitor.record_http_request(
            time.perf_counter() - start, response.status_code >= 500
        )
        return response

    async def handle_service_error(self, request: Request, exc: ServiceError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=_status_for(exc),
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    async def health_check(self):
        """Health check endpoint."""
        return {"status": "ok", "service": "feedboard"}

    async def metrics(self) -> MetricsSnapshot:
        return self.manager.get_metrics()

    async def get_status(self):
        result = self.manager.get_status()
        result["cache"] = self.cache.get_stats().to_dict()
        if self.scheduler is not None:
            result["scheduler"] = self.scheduler.get_status()
        return result

    async def services_health(self):
        return await self.manager.health_check()

    async def reset_service(self, name: str):
        """Refill a service's rate limit bucket."""
        self.manager.get_client(name)
        self.manager.limiter.reset(name)
        return {"service": name, "reset": True}

    async def list_widgets(self):
        return {
            name: {"type": widget.widget_type, "title": widget.title}
            for name, widget in self.widgets.items()
        }

    async def get_widget(self, name: str, refresh: bool = False):
        widget = self.widgets.get(name)
        if widget is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "WidgetNotFound", "detail": f"Unknown widget: {name}"},
            )
        return await widget.load(self.manager, self.cache, self.timeout, force=refresh)


def create_app(
    manager: ServiceManager,
    cache: CacheStore,
    widgets: dict[str, BaseWidget[Any]] | None = None,
    scheduler: RefreshScheduler | None = None,
) -> FastAPI:
    """Create the FastAPI app."""
    server = DashboardServer(manager, cache, widgets, scheduler)
    return server.app
