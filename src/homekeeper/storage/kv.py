"""Async key-value store backends.

The engine persists JSON blobs under string keys. Every backend raises
StorageError on I/O failure; callers decide whether to log or propagate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

import redis.asyncio as redis

from homekeeper.core.errors import StorageError


class KeyValueStore(Protocol):
    """Minimal async key-value interface used by the persistence layer."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def multi_set(self, items: Mapping[str, str]) -> None: ...

    async def multi_remove(self, keys: Iterable[str]) -> None: ...

    async def close(self) -> None: ...


class RedisKeyValueStore:
    """Key-value store backed by a Redis database."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=10,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except redis.RedisError as e:
            raise StorageError(f"GET {key} failed: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client.set(key, value)
        except redis.RedisError as e:
            raise StorageError(f"SET {key} failed: {e}") from e

    async def multi_set(self, items: Mapping[str, str]) -> None:
        """Write several keys atomically (MSET)."""
        if not items:
            return
        try:
            await self._client.mset(dict(items))
        except redis.RedisError as e:
            raise StorageError(f"MSET {sorted(items)} failed: {e}") from e

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            await self._client.delete(*keys)
        except redis.RedisError as e:
            raise StorageError(f"DEL {keys} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


class MemoryKeyValueStore:
    """In-process store for tests and offline runs. Nothing survives a restart."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def multi_set(self, items: Mapping[str, str]) -> None:
        self.data.update(items)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.data.pop(key, None)

    async def close(self) -> None:
        return None
