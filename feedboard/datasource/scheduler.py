"""
Widget refresh scheduler.

Reloads every widget on its own interval with APScheduler so the cache stays
warm and page loads rarely hit upstream services.
"""

import asyncio
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from feedboard.datasource.base import BaseWidget, WidgetData
from feedboard.services.cache import CacheStore
from feedboard.services.manager import ServiceManager
from feedboard.utils import log_duration


class RefreshScheduler:
    """Periodic widget refresh."""

    def __init__(
        self,
        manager: ServiceManager,
        cache: CacheStore,
        timeout: float | None = 30.0,
    ):
        self.scheduler = AsyncIOScheduler()
        self.manager = manager
        self.cache = cache
        self.timeout = timeout
        self._widgets: dict[str, tuple[BaseWidget[Any], int]] = {}
        self._last_refresh: dict[str, datetime] = {}
        self._is_running = False

    def add_widget(self, widget: BaseWidget[Any], refresh_minutes: int = 15) -> None:
        self._widgets[widget.name] = (widget, refresh_minutes)
        if self._is_running:
            self._schedule(widget, refresh_minutes)

    def _schedule(self, widget: BaseWidget[Any], refresh_minutes: int) -> None:
        self.scheduler.add_job(
            self.refresh_widget,
            trigger="interval",
            minutes=refresh_minutes,
            args=[widget.name],
            id=f"refresh_{widget.name}",
            name=f"Refresh {widget.name}",
            replace_existing=True,
        )

    async def refresh_widget(self, name: str) -> WidgetData | None:
        """Reload one widget, bypassing the cache."""
        entry = self._widgets.get(name)
        if entry is None:
            logger.warning(f"Unknown widget for refresh: {name}")
            return None

        widget, _ = entry
        try:
            data = await widget.load(self.manager, self.cache, self.timeout, force=True)
        except Exception as e:
            logger.error(f"Error refreshing widget {name}: {e}")
            return None

        self._last_refresh[name] = datetime.now()
        if data.error:
            logger.warning(f"Widget {name} refreshed with error: {data.error}")
        else:
            logger.info(f"Widget {name} refreshed: {len(data.items)} items")
        return data

    def start(self) -> None:
        """Start the scheduler. Must run inside an event loop."""
        if self._is_running:
            logger.warning("Refresh scheduler is already running")
            return

        for widget, refresh_minutes in self._widgets.values():
            self._schedule(widget, refresh_minutes)

        self.scheduler.start()
        self._is_running = True
        logger.info(f"Refresh scheduler started for {len(self._widgets)} widgets")

    def stop(self) -> None:
        if not self._is_running:
            logger.warning("Refresh scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Refresh scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    @log_duration
    async def refresh_now(self) -> dict[str, WidgetData | None]:
        """Refresh every widget immediately (manual trigger)."""
        logger.info("Manual widget refresh triggered")
        names = list(self._widgets)
        results = await asyncio.gather(*(self.refresh_widget(name) for name in names))
        return dict(zip(names, results))

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._is_running,
            "widgets": {
                name: {
                    "refresh_minutes": minutes,
                    "last_refresh": (
                        self._last_refresh[name].isoformat()
                        if name in self._last_refresh
                        else None
                    ),
                }
                for name, (_, minutes) in self._widgets.items()
            },
        }
