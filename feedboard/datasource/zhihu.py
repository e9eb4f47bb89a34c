"""
Zhihu trending list (知乎热榜).
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from feedboard.datasource.base import BaseWidget, WidgetConfigError
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager

ALL_CATEGORIES = "all"
DEFAULT_CATEGORY = "general"


class ZhihuTrending(BaseModel):
    id: str
    title: str
    excerpt: str = ""
    url: str = ""
    author: str = ""
    author_url: str = ""
    image: str = ""
    heat_value: int = 0
    heat_text: str = ""
    answer_count: int = 0
    category: str = DEFAULT_CATEGORY
    updated_at: datetime = Field(default_factory=datetime.now)


class ZhihuTrendingWidget(BaseWidget[ZhihuTrending]):
    widget_type = "zhihu-trending"
    api_source = "zhihu"
    default_title = "Zhihu Trending"

    def __init__(
        self,
        categories: list[str] | None = None,
        show_images: bool = True,
        collapse_after: int = 5,
        **kwargs: Any,
    ):
        kwargs.setdefault("limit", 15)
        super().__init__(**kwargs)
        self.categories = list(categories or [ALL_CATEGORIES])
        self.show_images = show_images
        self.collapse_after = collapse_after

    def cache_key(self) -> str:
        return f"{self.widget_type}:{self.name}:{','.join(self.categories)}"

    def validate(self) -> None:
        super().validate()
        if any(not category for category in self.categories):
            raise WidgetConfigError("zhihu-trending: category must not be empty")

    def extra(self) -> dict[str, Any]:
        return {"show_images": self.show_images, "collapse_after": self.collapse_after}

    def filter_categories(self, items: list[ZhihuTrending]) -> list[ZhihuTrending]:
        """Keep items in the configured categories; ``["all"]`` keeps everything."""
        if not self.categories or self.categories[0] == ALL_CATEGORIES:
            return items
        wanted = set(self.categories)
        return [item for item in items if item.category in wanted]

    async def fetch(
        self, manager: "ServiceManager", timeout: float | None = None
    ) -> list[ZhihuTrending]:
        data = await self.request_json(
            manager,
            APIRequest(
                path="/api/v3/feed/topstory/hot-lists/total",
                headers={"Referer": "https://www.zhihu.com"},
                timeout=10.0,
            ),
            timeout,
        )
        items = [self._parse(entry) for entry in data.get("data", []) or []]
        return self.filter_categories(items)[: self.limit]

    def _parse(self, entry: dict[str, Any]) -> ZhihuTrending:
        target = entry.get("target") or {}
        author = target.get("author") or {}
        return ZhihuTrending(
            id=str(target.get("id", "")),
            title=target.get("title", ""),
            excerpt=target.get("excerpt", ""),
            url=target.get("url", ""),
            author=author.get("name", ""),
            author_url=author.get("url", ""),
            image=author.get("avatar_url", "") if self.show_images else "",
            heat_value=entry.get("heat_value", 0) or 0,
            heat_text=entry.get("detail_text", ""),
            answer_count=target.get("answer_count", 0) or 0,
            category=entry.get("category") or DEFAULT_CATEGORY,
        )
