"""
Unit tests for the cache backends.

MemoryCache runs against a fake clock; DiskCache writes to tmp_path;
RedisCache talks to an AsyncMock client.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError

from feedboard.config import CacheConfig
from feedboard.services.cache import (
    CacheResult,
    DiskCache,
    MemoryCache,
    RedisCache,
    create_cache,
)
from feedboard.services.errors import CacheError


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Repo(BaseModel):
    name: str
    stars: int


@pytest.fixture
def clock():
    return FakeClock()


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_set_then_get_returns_value(self):
        cache = MemoryCache()

        await cache.set("k", {"a": 1, "b": [1, 2]})
        result = await cache.get("k")

        assert isinstance(result, CacheResult)
        assert result.data == {"a": 1, "b": [1, 2]}

    @pytest.mark.asyncio
    async def test_get_with_type_decodes_model(self):
        cache = MemoryCache()

        await cache.set("repo", Repo(name="feedboard", stars=3))
        result = await cache.get("repo", Repo)

        assert result.data == Repo(name="feedboard", stars=3)

    @pytest.mark.asyncio
    async def test_cached_none_is_a_hit(self):
        cache = MemoryCache()

        await cache.set("nothing", None)
        result = await cache.get("nothing")

        assert result is not None
        assert result.data is None

    @pytest.mark.asyncio
    async def test_missing_key_is_a_miss(self):
        cache = MemoryCache()

        assert await cache.get("absent") is None
        assert cache.get_stats().misses == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        cache = MemoryCache(default_ttl=0.1)

        await cache.set("k", "v")
        assert await cache.get("k") is not None

        await asyncio.sleep(0.15)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_expired_read_removes_entry(self, clock):
        cache = MemoryCache(clock=clock)
        await cache.set("k", "value", ttl=10)

        clock.now = 10.0
        assert await cache.get("k") is None

        stats = cache.get_stats()
        assert stats.expired == 1
        assert stats.entries == 0
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_timedelta_ttl(self, clock):
        cache = MemoryCache(clock=clock)
        await cache.set("k", 1, ttl=timedelta(minutes=1))

        clock.now = 59.0
        assert await cache.get("k") is not None
        clock.now = 60.0
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_size_never_exceeds_max(self, clock):
        # Each value "xxxxxxxx" serializes to 10 bytes
        cache = MemoryCache(max_size=35, clock=clock)

        for i in range(10):
            await cache.set(f"k{i}", "x" * 8, ttl=100 + i)
            assert cache.size <= 35

        stats = cache.get_stats()
        assert stats.entries == 3
        assert stats.evictions == 7

    @pytest.mark.asyncio
    async def test_evicts_entry_nearest_expiry(self, clock):
        cache = MemoryCache(max_size=25, clock=clock)
        await cache.set("long", "x" * 8, ttl=1000)
        await cache.set("short", "x" * 8, ttl=10)

        await cache.set("new", "x" * 8, ttl=500)

        assert await cache.get("short") is None
        assert await cache.get("long") is not None
        assert await cache.get("new") is not None

    @pytest.mark.asyncio
    async def test_large_insert_evicts_until_it_fits(self, clock):
        cache = MemoryCache(max_size=30, clock=clock)
        await cache.set("a", "x" * 8, ttl=10)
        await cache.set("b", "x" * 8, ttl=20)

        await cache.set("big", "x" * 20, ttl=30)

        assert cache.size <= 30
        assert await cache.get("big") is not None
        assert cache.get_stats().evictions == 2

    @pytest.mark.asyncio
    async def test_overwrite_releases_old_size(self):
        cache = MemoryCache()
        await cache.set("k", "x" * 100)
        await cache.set("k", "y")

        assert cache.size == len(b'"y"')
        assert (await cache.get("k")).data == "y"

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = MemoryCache()
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        assert await cache.get("a") is None

        await cache.clear()
        assert await cache.get("b") is None
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, clock):
        cache = MemoryCache(clock=clock)
        await cache.set("old", 1, ttl=5)
        await cache.set("fresh", 2, ttl=50)

        clock.now = 10.0
        removed = await cache.cleanup_expired()

        assert removed == 1
        assert cache.get_stats().entries == 1

    @pytest.mark.asyncio
    async def test_sweep_loop_removes_expired_entries(self):
        cache = MemoryCache(default_ttl=0.01, sweep_interval=0.02)
        await cache.set("k", "v")

        async with cache:
            await asyncio.sleep(0.1)
            assert cache.get_stats().entries == 0

        assert cache._sweep_task is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_raises_cache_error(self):
        cache = MemoryCache()
        await cache.set("repo", {"name": "x", "stars": "many"})

        with pytest.raises(CacheError):
            await cache.get("repo", Repo)

    @pytest.mark.asyncio
    async def test_unserializable_value_raises_cache_error(self):
        cache = MemoryCache()

        with pytest.raises(CacheError):
            await cache.set("k", object())

    @pytest.mark.asyncio
    async def test_hit_rate(self):
        cache = MemoryCache()
        await cache.set("k", 1)
        await cache.get("k")
        await cache.get("missing")

        assert cache.get_stats().hit_rate == 0.5
        assert cache.get_stats().to_dict()["hit_rate"] == "50.00%"


class TestDiskCache:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        cache = DiskCache(tmp_path / "cache")

        await cache.set("widget:gitee", [{"name": "a"}])
        result = await cache.get("widget:gitee")

        assert result.data == [{"name": "a"}]
        assert len(list((tmp_path / "cache").glob("*.cache"))) == 1

    @pytest.mark.asyncio
    async def test_expired_file_is_removed(self, tmp_path):
        cache = DiskCache(tmp_path)

        await cache.set("k", "v", ttl=0.05)
        await asyncio.sleep(0.1)

        assert await cache.get("k") is None
        assert list(tmp_path.glob("*.cache")) == []

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_cache_error(self, tmp_path):
        cache = DiskCache(tmp_path)
        await cache.set("k", "v")
        path = next(tmp_path.glob("*.cache"))
        path.write_bytes(b"not-a-timestamp\n\"v\"")

        with pytest.raises(CacheError):
            await cache.get("k")

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, tmp_path):
        cache = DiskCache(tmp_path)
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        await cache.clear()
        assert await cache.get("b") is None


class TestRedisCache:
    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_set_uses_prefix_and_millisecond_ttl(self, redis_client):
        cache = RedisCache(prefix="fb:", client=redis_client)

        await cache.set("k", {"a": 1}, ttl=1.5)

        redis_client.set.assert_awaited_once_with("fb:k", b'{"a":1}', px=1500)

    @pytest.mark.asyncio
    async def test_get_hit_and_miss(self, redis_client):
        cache = RedisCache(client=redis_client)

        redis_client.get.return_value = b"[1,2]"
        assert (await cache.get("k")).data == [1, 2]

        redis_client.get.return_value = None
        assert await cache.get("k") is None

        stats = cache.get_stats()
        assert (stats.hits, stats.misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_redis_failure_raises_cache_error(self, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")
        cache = RedisCache(client=redis_client)

        with pytest.raises(CacheError):
            await cache.get("k")

    @pytest.mark.asyncio
    async def test_delete(self, redis_client):
        redis_client.delete.return_value = 1
        cache = RedisCache(client=redis_client)

        assert await cache.delete("k") is True

    @pytest.mark.asyncio
    async def test_close_closes_client(self, redis_client):
        cache = RedisCache(client=redis_client)

        await cache.close()

        redis_client.aclose.assert_awaited_once()


class TestCreateCache:
    def test_memory_is_default(self):
        cache = create_cache(CacheConfig())
        assert isinstance(cache, MemoryCache)

    def test_unknown_type_falls_back_to_memory(self):
        cache = create_cache(CacheConfig(type="memcached"))
        assert isinstance(cache, MemoryCache)

    def test_disk(self, tmp_path):
        cache = create_cache(CacheConfig(type="disk", directory=str(tmp_path)))
        assert isinstance(cache, DiskCache)

    def test_redis(self):
        cache = create_cache(CacheConfig(type="redis", redis_url="redis://localhost:6379/1"))
        assert isinstance(cache, RedisCache)
