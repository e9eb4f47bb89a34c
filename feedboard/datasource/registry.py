"""
Widget registry - maps widget type names to constructors.
"""

import threading
from typing import Any, Callable

from loguru import logger

from feedboard.config import WidgetConfig
from feedboard.datasource.base import BaseWidget, WidgetConfigError
from feedboard.datasource.bilibili import BilibiliVideosWidget
from feedboard.datasource.douyu import DouyuLiveWidget
from feedboard.datasource.gitee import GiteeReposWidget
from feedboard.datasource.weibo import WeiboHotSearchWidget
from feedboard.datasource.zhihu import ZhihuTrendingWidget

WidgetFactory = Callable[..., BaseWidget[Any]]


class WidgetRegistry:
    """Explicit, per-application widget registry."""

    def __init__(self):
        self._factories: dict[str, WidgetFactory] = {}
        self._lock = threading.Lock()

    def register(self, widget_type: str, factory: WidgetFactory) -> None:
        with self._lock:
            self._factories[widget_type] = factory
        logger.debug(f"Registered widget type: {widget_type}")

    def create(self, widget_type: str, **options: Any) -> BaseWidget[Any]:
        """Instantiate and validate a widget."""
        with self._lock:
            factory = self._factories.get(widget_type)
        if factory is None:
            raise WidgetConfigError(f"Unknown widget type: {widget_type}")

        try:
            widget = factory(**options)
        except (TypeError, ValueError) as e:
            raise WidgetConfigError(f"Invalid options for {widget_type}: {e}") from e
        widget.validate()
        return widget

    def build(self, config: WidgetConfig) -> BaseWidget[Any]:
        options = dict(config.options)
        options["name"] = config.name or options.get("name") or config.type
        return self.create(config.type, **options)

    def types(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)


def default_registry() -> WidgetRegistry:
    """Registry with every built-in widget."""
    registry = WidgetRegistry()
    for widget_cls in (
        BilibiliVideosWidget,
        GiteeReposWidget,
        WeiboHotSearchWidget,
        DouyuLiveWidget,
        ZhihuTrendingWidget,
    ):
        registry.register(widget_cls.widget_type, widget_cls)
    return registry
