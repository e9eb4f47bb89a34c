"""
Bilibili uploader videos.

Lists the latest uploads of each configured uploader (UP主).
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel

from feedboard.datasource.base import BaseWidget, WidgetConfigError
from feedboard.services.errors import UpstreamError
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager


class BilibiliUploader(BaseModel):
    uid: str
    name: str = ""


class BilibiliVideo(BaseModel):
    id: str
    title: str
    author: str
    author_url: str
    video_url: str
    thumbnail: str = ""
    duration: str = ""
    view_count: int = 0
    published_at: datetime
    source: str = "bilibili"


class BilibiliVideosWidget(BaseWidget[BilibiliVideo]):
    widget_type = "bilibili-videos"
    api_source = "bilibili"
    default_title = "Bilibili Videos"

    def __init__(
        self,
        uploaders: list[dict[str, Any] | BilibiliUploader] | None = None,
        style: str = "horizontal-cards",
        collapse_after: int = 5,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.uploaders = [
            u if isinstance(u, BilibiliUploader) else BilibiliUploader(**u)
            for u in uploaders or []
        ]
        self.style = style
        self.collapse_after = collapse_after

    def cache_key(self) -> str:
        uids = ",".join(u.uid for u in self.uploaders)
        return f"{self.widget_type}:{self.name}:{uids}"

    def validate(self) -> None:
        super().validate()
        if not self.uploaders:
            raise WidgetConfigError("bilibili-videos: at least one uploader is required")
        if any(not u.uid for u in self.uploaders):
            raise WidgetConfigError("bilibili-videos: uploader uid must not be empty")

    def extra(self) -> dict[str, Any]:
        return {"style": self.style, "collapse_after": self.collapse_after}

    async def fetch(
        self, manager: "ServiceManager", timeout: float | None = None
    ) -> list[BilibiliVideo]:
        videos: list[BilibiliVideo] = []
        for uploader in self.uploaders:
            try:
                videos.extend(await self._fetch_uploader(manager, uploader, timeout))
            except Exception as e:
                logger.warning(f"Skipping bilibili uploader {uploader.uid}: {e}")
        return videos[: self.limit]

    async def _fetch_uploader(
        self,
        manager: "ServiceManager",
        uploader: BilibiliUploader,
        timeout: float | None,
    ) -> list[BilibiliVideo]:
        data = await self.request_json(
            manager,
            APIRequest(
                path="/x/space/arc/search",
                params={"mid": uploader.uid, "ps": 10, "tid": 0, "pn": 1, "order": "pubdate"},
                headers={"Referer": "https://www.bilibili.com"},
                timeout=10.0,
            ),
            timeout,
        )
        if data.get("code", 0) != 0:
            raise UpstreamError(
                f"bilibili API error: {data.get('message', 'unknown')}",
                service_id=self.api_source,
            )

        vlist = data.get("data", {}).get("list", {}).get("vlist", []) or []
        return [
            BilibiliVideo(
                id=str(video["aid"]),
                title=video.get("title", ""),
                author=uploader.name or video.get("author", ""),
                author_url=f"https://space.bilibili.com/{uploader.uid}",
                video_url=f"https://www.bilibili.com/video/av{video['aid']}",
                thumbnail=video.get("pic", ""),
                duration=video.get("length", ""),
                view_count=video.get("play", video.get("video_review", 0)) or 0,
                published_at=datetime.fromtimestamp(video.get("created", 0)),
            )
            for video in vlist
        ]
