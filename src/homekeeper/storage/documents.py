"""JSON documents persisted through a PersistenceQueue.

A StoredDocument keeps an in-memory mirror of one key. Mutations update the
mirror synchronously and enqueue a write of the serialized snapshot, so
readers always see the latest state even while the store write is in flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

import structlog
from pydantic import TypeAdapter, ValidationError

from homekeeper.core.errors import StorageError
from homekeeper.storage.kv import KeyValueStore
from homekeeper.storage.queue import PersistenceQueue

logger = structlog.get_logger()

T = TypeVar("T")


class StoredDocument(Generic[T]):
    """One key in the store, mirrored in memory."""

    def __init__(
        self,
        store: KeyValueStore,
        queue: PersistenceQueue,
        key: str,
        adapter: TypeAdapter[T],
        default: Callable[[], T],
    ) -> None:
        self.store = store
        self.queue = queue
        self.key = key
        self._adapter = adapter
        self._default = default
        self._value: T | None = None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> T:
        """Read the key into the mirror. Unreadable data falls back to the default."""
        value: T
        try:
            raw = await self.store.get(self.key)
        except StorageError:
            logger.exception("document_load_failed", key=self.key)
            raw = None

        if raw is None:
            value = self._default()
        else:
            try:
                value = self._adapter.validate_json(raw)
            except ValidationError:
                logger.warning("document_corrupt", key=self.key, exc_info=True)
                value = self._default()

        self._value = value
        self._loaded = True
        return value

    @property
    def value(self) -> T:
        if not self._loaded:
            msg = f"Document {self.key} not loaded. Call load() first."
            raise RuntimeError(msg)
        return self._value  # type: ignore[return-value]

    def dump(self, value: T) -> str:
        return self._adapter.dump_json(value).decode()

    def stage(self, value: T) -> str:
        """Replace the mirror and return the serialized payload to write."""
        self._value = value
        self._loaded = True
        return self.dump(value)

    def set(self, value: T) -> asyncio.Future[bool]:
        """Replace the mirror and enqueue the store write."""
        payload = self.stage(value)
        store, key = self.store, self.key

        async def write() -> None:
            await store.set(key, payload)

        return self.queue.submit(write)

    def reset(self) -> None:
        """Drop the mirror back to the default without touching the store."""
        self._value = self._default()
        self._loaded = True


def commit_together(*updates: tuple[StoredDocument, object]) -> asyncio.Future[bool]:
    """Replace several documents and persist them in a single multi-key write.

    All documents must share the same store and queue.
    """
    if not updates:
        msg = "commit_together() needs at least one document"
        raise ValueError(msg)

    first = updates[0][0]
    payloads: dict[str, str] = {}
    for doc, value in updates:
        if doc.store is not first.store or doc.queue is not first.queue:
            msg = f"Document {doc.key} does not share a store and queue with {first.key}"
            raise ValueError(msg)
        payloads[doc.key] = doc.stage(value)

    store = first.store

    async def write() -> None:
        await store.multi_set(payloads)

    return first.queue.submit(write)


def remove_together(*docs: StoredDocument) -> asyncio.Future[bool]:
    """Reset several documents to their defaults and delete their keys."""
    if not docs:
        msg = "remove_together() needs at least one document"
        raise ValueError(msg)

    first = docs[0]
    for doc in docs:
        if doc.store is not first.store or doc.queue is not first.queue:
            msg = f"Document {doc.key} does not share a store and queue with {first.key}"
            raise ValueError(msg)
        doc.reset()

    store = first.store
    keys = [doc.key for doc in docs]

    async def write() -> None:
        await store.multi_remove(keys)

    return first.queue.submit(write)
