"""
Base widget interface.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from feedboard.services.cache import CacheStore
from feedboard.services.errors import CacheError
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager

T = TypeVar("T", bound=BaseModel)

DEFAULT_CACHE_DURATION = 300.0


class WidgetConfigError(ValueError):
    """Widget options are invalid."""

    pass


class WidgetData(BaseModel):
    """What a widget hands to the rendering layer."""

    type: str
    title: str
    items: list[Any] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    updated_at: datetime = Field(default_factory=datetime.now)


class BaseWidget(ABC, Generic[T]):
    """
    Abstract base class for all dashboard widgets.

    All widgets should:
    - Fetch through the ServiceManager (rate limiting, pools, fallbacks)
    - Return Pydantic models
    - Skip failed items in a batch instead of failing the batch
    """

    widget_type: ClassVar[str]
    api_source: ClassVar[str]
    default_title: ClassVar[str]

    def __init__(
        self,
        name: str | None = None,
        title: str | None = None,
        cache_duration: float = DEFAULT_CACHE_DURATION,
        limit: int = 10,
    ):
        self.name = name or self.widget_type
        self.title = title or self.default_title
        self.cache_duration = cache_duration
        self.limit = limit

    @abstractmethod
    async def fetch(self, manager: "ServiceManager", timeout: float | None = None) -> list[T]:
        """Fetch fresh items from the widget's service."""
        ...

    @abstractmethod
    def cache_key(self) -> str:
        ...

    def validate(self) -> None:
        """Raise WidgetConfigError if the widget is misconfigured."""
        if self.limit <= 0:
            raise WidgetConfigError(f"{self.widget_type}: limit must be greater than 0")

    def extra(self) -> dict[str, Any]:
        """Widget-specific display options passed through to WidgetData."""
        return {}

    async def request_json(
        self,
        manager: "ServiceManager",
        request: APIRequest,
        timeout: float | None = None,
    ) -> Any:
        response = await manager.request_with_fallback(self.api_source, request, timeout)
        return response.json()

    async def load(
        self,
        manager: "ServiceManager",
        cache: CacheStore | None = None,
        timeout: float | None = None,
        force: bool = False,
    ) -> WidgetData:
        """
        Return widget data, from cache when fresh.

        A failed fetch yields an empty WidgetData carrying the error message;
        it is never cached.
        """
        key = self.cache_key()

        if cache is not None and not force:
            try:
                cached = await cache.get(key, WidgetData)
            except CacheError as e:
                logger.warning(f"Ignoring unreadable cache entry for {self.name}: {e}")
                cached = None
            manager.monitor.record_cache(cached is not None)
            if cached is not None:
                return cached.data

        start = time.perf_counter()
        try:
            items = await self.fetch(manager, timeout)
        except Exception as e:
            manager.monitor.record_widget_load(self.name, time.perf_counter() - start, True)
            logger.error(f"Failed to load widget {self.name}: {e}")
            return WidgetData(
                type=self.widget_type,
                title=self.title,
                extra=self.extra(),
                error=str(e),
            )
        manager.monitor.record_widget_load(self.name, time.perf_counter() - start, False)

        data = WidgetData(
            type=self.widget_type,
            title=self.title,
            items=items[: self.limit],
            extra=self.extra(),
        )
        if cache is not None:
            try:
                await cache.set(key, data, self.cache_duration)
            except CacheError as e:
                logger.warning(f"Failed to cache widget {self.name}: {e}")
        return data
