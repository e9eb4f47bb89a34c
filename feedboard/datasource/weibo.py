"""
Weibo hot search list.
"""

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from feedboard.datasource.base import BaseWidget
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager

# Upstream returns at most this many entries worth showing
MAX_HOT_SEARCHES = 50


class WeiboHotSearch(BaseModel):
    rank: int
    keyword: str
    url: str
    hot_value: int = 0
    category: str = ""
    icon: str = ""


class WeiboHotSearchWidget(BaseWidget[WeiboHotSearch]):
    widget_type = "weibo-hot"
    api_source = "weibo"
    default_title = "Weibo Hot Search"

    def __init__(self, show_category: bool = True, **kwargs: Any):
        kwargs.setdefault("limit", 20)
        super().__init__(**kwargs)
        self.show_category = show_category

    def cache_key(self) -> str:
        return f"{self.widget_type}:{self.name}:{self.limit}"

    def extra(self) -> dict[str, Any]:
        return {"show_category": self.show_category}

    async def fetch(
        self, manager: "ServiceManager", timeout: float | None = None
    ) -> list[WeiboHotSearch]:
        data = await self.request_json(
            manager, APIRequest(path="/2/search/topics.json", timeout=10.0), timeout
        )
        entries = data.get("data", []) or []
        return [
            WeiboHotSearch(
                rank=item.get("realpos", index + 1),
                keyword=item.get("word", ""),
                url=f"https://s.weibo.com/weibo?q={item.get('word_scheme', item.get('word', ''))}",
                hot_value=item.get("num", 0),
                category=item.get("category", ""),
                icon=item.get("icon", ""),
            )
            for index, item in enumerate(entries[:MAX_HOT_SEARCHES])
        ][: self.limit]
