"""Unit tests for key-value store backends."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from homekeeper.core.errors import StorageError
from homekeeper.storage.kv import MemoryKeyValueStore, RedisKeyValueStore


@pytest.fixture
def redis_client() -> AsyncMock:
    return AsyncMock()


class TestRedisKeyValueStore:
    @pytest.mark.asyncio
    async def test_get_returns_client_value(self, redis_client: AsyncMock) -> None:
        redis_client.get.return_value = '{"a": 1}'
        store = RedisKeyValueStore(redis_client)
        assert await store.get("k") == '{"a": 1}'
        redis_client.get.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_redis_error_becomes_storage_error(self, redis_client: AsyncMock) -> None:
        redis_client.set.side_effect = redis.ConnectionError("refused")
        store = RedisKeyValueStore(redis_client)
        with pytest.raises(StorageError, match="SET k"):
            await store.set("k", "v")

    @pytest.mark.asyncio
    async def test_multi_set_uses_mset(self, redis_client: AsyncMock) -> None:
        store = RedisKeyValueStore(redis_client)
        await store.multi_set({"a": "1", "b": "2"})
        redis_client.mset.assert_awaited_once_with({"a": "1", "b": "2"})

    @pytest.mark.asyncio
    async def test_empty_batches_skip_round_trip(self, redis_client: AsyncMock) -> None:
        store = RedisKeyValueStore(redis_client)
        await store.multi_set({})
        await store.multi_remove([])
        redis_client.mset.assert_not_awaited()
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_multi_remove_deletes_all_keys(self, redis_client: AsyncMock) -> None:
        store = RedisKeyValueStore(redis_client)
        await store.multi_remove(["a", "b"])
        redis_client.delete.assert_awaited_once_with("a", "b")

    @pytest.mark.asyncio
    async def test_close_releases_pool(self, redis_client: AsyncMock) -> None:
        store = RedisKeyValueStore(redis_client)
        await store.close()
        redis_client.aclose.assert_awaited_once()


class TestMemoryKeyValueStore:
    @pytest.mark.asyncio
    async def test_basic_operations(self) -> None:
        store = MemoryKeyValueStore({"a": "1"})
        assert await store.get("a") == "1"
        assert await store.get("missing") is None

        await store.set("b", "2")
        await store.multi_set({"c": "3", "d": "4"})
        await store.multi_remove(["a", "c", "never-set"])

        assert store.data == {"b": "2", "d": "4"}
