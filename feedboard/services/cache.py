"""
Cache stores - TTL key/value caches with pluggable backends.

Values are serialized to JSON bytes on ``set`` so every backend stores the
same representation. A miss returns ``None``; a hit returns a ``CacheResult``
so that a cached ``None`` is still distinguishable from a miss. Decode
failures raise ``CacheError`` and are never reported as misses.

Backends:
- MemoryCache: in-process, byte-size bounded, near-expiry eviction, periodic sweep
- DiskCache: one file per key under a directory
- RedisCache: redis.asyncio, expiry delegated to Redis
"""

import asyncio
import contextlib
import hashlib
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

import redis.asyncio as aioredis
from loguru import logger
from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, from_json, to_json
from redis.exceptions import RedisError

from feedboard.config import CacheConfig
from feedboard.services.errors import CacheError

T = TypeVar("T")

DEFAULT_TTL = 300.0
DEFAULT_SWEEP_INTERVAL = 300.0


@dataclass
class CacheResult(Generic[T]):
    """Result from cache lookup."""

    data: T


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    evictions: int = 0
    entries: int = 0
    size_bytes: int = 0
    max_size_bytes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "evictions": self.evictions,
            "entries": self.entries,
            "size_bytes": self.size_bytes,
            "max_size_bytes": self.max_size_bytes,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


def _seconds(ttl: float | timedelta | None, default: float) -> float:
    if ttl is None:
        return default
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class CacheStore(ABC):
    """
    Backend-agnostic cache contract.

    Usage:
        cache = create_cache(config.cache)
        await cache.start()

        result = await cache.get("bilibili-videos:3")
        if result is None:
            data = await fetch()
            await cache.set("bilibili-videos:3", data, ttl=timedelta(minutes=5))
    """

    backend = "abstract"

    def __init__(self, default_ttl: float | timedelta = DEFAULT_TTL):
        self._default_ttl = _seconds(default_ttl, DEFAULT_TTL)
        self._stats = CacheStats()

    @abstractmethod
    async def get(self, key: str, type_: Any = None) -> CacheResult[Any] | None:
        ...

    @abstractmethod
    async def set(
        self, key: str, value: Any, ttl: float | timedelta | None = None
    ) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def start(self) -> None:
        """Start background maintenance, if the backend has any."""
        return None

    async def close(self) -> None:
        """Stop background maintenance and release connections."""
        return None

    def get_stats(self) -> CacheStats:
        return self._stats

    def _encode(self, key: str, value: Any) -> bytes:
        try:
            return to_json(value)
        except PydanticSerializationError as e:
            raise CacheError(f"Cannot serialize value for {key}: {e}") from e

    def _decode(self, key: str, raw: bytes, type_: Any = None) -> CacheResult[Any]:
        try:
            if type_ is not None:
                data = TypeAdapter(type_).validate_json(raw)
            else:
                data = from_json(raw)
        except (ValueError, ValidationError) as e:
            logger.error(f"[{self.backend}] Failed to decode cached value for {key}: {e}")
            raise CacheError(f"Corrupt cache entry for {key}: {e}") from e
        return CacheResult(data=data)

    async def __aenter__(self) -> "CacheStore":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


@dataclass
class _MemoryItem:
    value: bytes
    expires_at: float


class MemoryCache(CacheStore):
    """
    In-process cache bounded by total serialized size.

    When an insert would push the stored size past ``max_size`` the entry
    closest to expiry is evicted (repeatedly, until the insert fits). This
    approximates least-recently-useful; no access times are tracked.
    """

    backend = "memory"

    def __init__(
        self,
        max_size: int = 0,
        default_ttl: float | timedelta = DEFAULT_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        super().__init__(default_ttl)
        self._data: dict[str, _MemoryItem] = {}
        self._max_size = max_size
        self._size = 0
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task[None] | None = None
        self._stats.max_size_bytes = max_size

    @property
    def size(self) -> int:
        """Total stored bytes."""
        return self._size

    async def get(self, key: str, type_: Any = None) -> CacheResult[Any] | None:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if self._clock() >= item.expires_at:
                self._remove(key)
                self._stats.misses += 1
                self._stats.expired += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._stats.hits += 1
            raw = item.value

        self._log(f"HIT: {key[:50]}")
        return self._decode(key, raw, type_)

    async def set(
        self, key: str, value: Any, ttl: float | timedelta | None = None
    ) -> None:
        data = self._encode(key, value)
        expires_at = self._clock() + _seconds(ttl, self._default_ttl)

        async with self._lock:
            if key in self._data:
                self._remove(key)

            while (
                self._max_size > 0
                and self._data
                and self._size + len(data) > self._max_size
            ):
                self._evict_nearest_expiry()

            self._data[key] = _MemoryItem(value=data, expires_at=expires_at)
            self._size += len(data)
            self._log(f"SET: {key[:50]} ({len(data)} bytes)")

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._data:
                self._remove(key)
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._data)
            self._data.clear()
            self._size = 0
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._data.items() if now >= v.expires_at]
            for key in expired_keys:
                self._remove(key)
            self._stats.expired += len(expired_keys)

        if expired_keys:
            logger.debug(f"Cache sweep removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    async def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.cleanup_expired()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}")

    def _remove(self, key: str) -> None:
        item = self._data.pop(key)
        self._size -= len(item.value)

    def _evict_nearest_expiry(self) -> None:
        victim = min(self._data, key=lambda k: self._data[k].expires_at)
        self._remove(victim)
        self._stats.evictions += 1
        self._log(f"EVICT: {victim[:50]}")

    def get_stats(self) -> CacheStats:
        self._stats.entries = len(self._data)
        self._stats.size_bytes = self._size
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[MemoryCache] {message}")


class DiskCache(CacheStore):
    """
    File-per-key cache. Each file holds the wall-clock expiry on its first
    line followed by the serialized value.
    """

    backend = "disk"

    def __init__(
        self,
        directory: str | Path,
        default_ttl: float | timedelta = DEFAULT_TTL,
    ):
        super().__init__(default_ttl)
        self._directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._directory / f"{digest}.cache"

    async def get(self, key: str, type_: Any = None) -> CacheResult[Any] | None:
        path = self._path(key)
        async with self._lock:
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except FileNotFoundError:
                self._stats.misses += 1
                return None
            except OSError as e:
                raise CacheError(f"Failed to read cache file for {key}: {e}") from e

            header, _, raw = content.partition(b"\n")
            try:
                expires_at = float(header)
            except ValueError as e:
                logger.error(f"[disk] Corrupt cache header for {key}")
                raise CacheError(f"Corrupt cache entry for {key}") from e

            if time.time() >= expires_at:
                await asyncio.to_thread(path.unlink, True)
                self._stats.misses += 1
                self._stats.expired += 1
                return None

            self._stats.hits += 1

        return self._decode(key, raw, type_)

    async def set(
        self, key: str, value: Any, ttl: float | timedelta | None = None
    ) -> None:
        data = self._encode(key, value)
        expires_at = time.time() + _seconds(ttl, self._default_ttl)
        content = f"{expires_at!r}\n".encode("ascii") + data
        path = self._path(key)

        def write() -> None:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(content)
            tmp.replace(path)

        async with self._lock:
            try:
                await asyncio.to_thread(write)
            except OSError as e:
                raise CacheError(f"Failed to write cache file for {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        async with self._lock:
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return False
            return True

    async def clear(self) -> None:
        def remove_all() -> int:
            if not self._directory.exists():
                return 0
            count = 0
            for path in self._directory.glob("*.cache"):
                path.unlink(missing_ok=True)
                count += 1
            return count

        async with self._lock:
            count = await asyncio.to_thread(remove_all)
        logger.debug(f"[disk] CLEAR: {count} entries removed")


class RedisCache(CacheStore):
    """Redis-backed cache. Keys are namespaced with ``prefix``."""

    backend = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "feedboard:",
        default_ttl: float | timedelta = DEFAULT_TTL,
        client: aioredis.Redis | None = None,
    ):
        super().__init__(default_ttl)
        self._prefix = prefix
        self._client = client or aioredis.from_url(url)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str, type_: Any = None) -> CacheResult[Any] | None:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            raise CacheError(f"Redis GET failed for {key}: {e}") from e

        if raw is None:
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return self._decode(key, raw, type_)

    async def set(
        self, key: str, value: Any, ttl: float | timedelta | None = None
    ) -> None:
        data = self._encode(key, value)
        ttl_ms = max(1, int(_seconds(ttl, self._default_ttl) * 1000))
        try:
            await self._client.set(self._key(key), data, px=ttl_ms)
        except RedisError as e:
            raise CacheError(f"Redis SET failed for {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(self._key(key))
        except RedisError as e:
            raise CacheError(f"Redis DELETE failed for {key}: {e}") from e
        return bool(removed)

    async def clear(self) -> None:
        try:
            keys = [k async for k in self._client.scan_iter(match=f"{self._prefix}*")]
            if keys:
                await self._client.delete(*keys)
        except RedisError as e:
            raise CacheError(f"Redis clear failed: {e}") from e
        logger.debug(f"[redis] CLEAR: {len(keys)} entries removed")

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(config: CacheConfig) -> CacheStore:
    """Build the cache backend named by ``config.type``."""
    if config.type == "redis":
        return RedisCache(url=config.redis_url, default_ttl=config.ttl)
    if config.type == "disk":
        return DiskCache(config.directory, default_ttl=config.ttl)
    if config.type != "memory":
        logger.warning(f"Unknown cache type '{config.type}', using memory cache")
    return MemoryCache(
        max_size=config.max_size,
        default_ttl=config.ttl,
        sweep_interval=config.sweep_interval,
    )
