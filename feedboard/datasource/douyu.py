"""
Douyu livestream rooms.
"""

from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel

from feedboard.datasource.base import BaseWidget, WidgetConfigError
from feedboard.services.errors import UpstreamError
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager


class DouyuStream(BaseModel):
    room_id: str
    room_name: str = ""
    owner_name: str = ""
    owner_avatar: str = ""
    game_name: str = ""
    viewers: int = 0
    is_live: bool = False
    stream_url: str
    thumbnail: str = ""


class DouyuLiveWidget(BaseWidget[DouyuStream]):
    widget_type = "douyu-live"
    api_source = "douyu"
    default_title = "Douyu Live"

    def __init__(
        self,
        rooms: list[str] | None = None,
        live_only: bool = False,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.rooms = [str(room) for room in rooms or []]
        self.live_only = live_only

    def cache_key(self) -> str:
        return f"{self.widget_type}:{self.name}:{','.join(self.rooms)}"

    def validate(self) -> None:
        super().validate()
        if not self.rooms:
            raise WidgetConfigError("douyu-live: at least one room is required")
        if any(not room for room in self.rooms):
            raise WidgetConfigError("douyu-live: room id must not be empty")

    async def fetch(
        self, manager: "ServiceManager", timeout: float | None = None
    ) -> list[DouyuStream]:
        streams: list[DouyuStream] = []
        for room in self.rooms:
            try:
                stream = await self._fetch_room(manager, room, timeout)
            except Exception as e:
                logger.warning(f"Skipping douyu room {room}: {e}")
                continue
            if self.live_only and not stream.is_live:
                continue
            streams.append(stream)

        # Live rooms first, busiest first
        streams.sort(key=lambda s: (s.is_live, s.viewers), reverse=True)
        return streams[: self.limit]

    async def _fetch_room(
        self, manager: "ServiceManager", room: str, timeout: float | None
    ) -> DouyuStream:
        data = await self.request_json(
            manager, APIRequest(path=f"/api/v1/room/{room}", timeout=5.0), timeout
        )
        rooms = data.get("data") or []
        if data.get("error", 0) != 0 or not rooms:
            raise UpstreamError(f"room not found: {room}", service_id=self.api_source)

        info = rooms[0] if isinstance(rooms, list) else rooms
        room_id = str(info.get("room_id", room))
        return DouyuStream(
            room_id=room_id,
            room_name=info.get("room_name", ""),
            owner_name=info.get("owner_name", ""),
            owner_avatar=info.get("avatar", ""),
            game_name=info.get("game_name", ""),
            viewers=info.get("online", 0),
            is_live=info.get("show_status") == 1,
            stream_url=f"https://www.douyu.com/{room_id}",
            thumbnail=info.get("room_src", ""),
        )
