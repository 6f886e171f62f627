"""Task, equipment and home collections.

Each collection is one JSON array on its own PersistenceQueue. Mutations
update the in-memory array synchronously and return the future of the queued
write, so callers may fire several adds without awaiting and still get every
item persisted in call order. Listeners receive an EntityEvent for every
change; the notification lifecycle binder is the main subscriber.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter

from homekeeper.core.errors import NotFoundError
from homekeeper.models import Equipment, Home, Task, utcnow
from homekeeper.storage.documents import StoredDocument
from homekeeper.storage.kv import KeyValueStore
from homekeeper.storage.queue import PersistenceQueue

logger = structlog.get_logger()

E = TypeVar("E", bound=BaseModel)


class EntityKind(str, Enum):
    TASK = "task"
    EQUIPMENT = "equipment"
    HOME = "home"


class EntityChange(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    COMPLETED = "completed"
    DELETED = "deleted"
    DUE_DATE_CHANGED = "due_date_changed"
    SERVICE_CHANGED = "service_changed"


@dataclass(frozen=True)
class EntityEvent:
    kind: EntityKind
    change: EntityChange
    entity: Any
    previous: Any = None


Listener = Callable[[EntityEvent], None]

# Fields whose change raises a dedicated event on top of UPDATED
WATCHED_FIELDS: dict[EntityKind, dict[str, EntityChange]] = {
    EntityKind.TASK: {"due_date": EntityChange.DUE_DATE_CHANGED},
    EntityKind.EQUIPMENT: {
        "next_service_due": EntityChange.SERVICE_CHANGED,
        "needs_attention": EntityChange.SERVICE_CHANGED,
        "active": EntityChange.SERVICE_CHANGED,
    },
}


class EntityCollection(Generic[E]):
    """One persisted array of entities keyed by ``id``."""

    def __init__(
        self,
        kind: EntityKind,
        model: type[E],
        document: StoredDocument[list[E]],
        emit: Callable[[EntityEvent], None],
    ) -> None:
        self.kind = kind
        self._model = model
        self._document = document
        self._emit = emit

    async def load(self) -> None:
        await self._document.load()

    @property
    def queue(self) -> PersistenceQueue:
        return self._document.queue

    def all(self) -> list[E]:
        return [item.model_copy() for item in self._document.value]

    def get(self, entity_id: str) -> E | None:
        for item in self._document.value:
            if item.id == entity_id:  # type: ignore[attr-defined]
                return item.model_copy()
        return None

    def add(self, entity: E) -> asyncio.Future[bool]:
        future = self._document.set([*self._document.value, entity])
        logger.info("entity_added", kind=self.kind.value, entity_id=entity.id)  # type: ignore[attr-defined]
        self._emit(EntityEvent(self.kind, EntityChange.CREATED, entity.model_copy()))
        return future

    def update(self, entity_id: str, changes: Mapping[str, Any]) -> asyncio.Future[bool]:
        """Apply field changes. Raises NotFoundError for an unknown id."""
        previous = self.get(entity_id)
        if previous is None:
            raise NotFoundError(self.kind.value, entity_id)

        merged = {**previous.model_dump(), **changes, "updated_at": utcnow()}
        updated = self._model.model_validate(merged)
        future = self._replace(updated)
        logger.info("entity_updated", kind=self.kind.value, entity_id=entity_id, fields=sorted(changes))

        self._emit(EntityEvent(self.kind, EntityChange.UPDATED, updated.model_copy(), previous))
        emitted: set[EntityChange] = set()
        for field, change in WATCHED_FIELDS.get(self.kind, {}).items():
            if field in changes and getattr(previous, field) != getattr(updated, field) and change not in emitted:
                emitted.add(change)
                self._emit(EntityEvent(self.kind, change, updated.model_copy(), previous))
        return future

    def delete(self, entity_id: str) -> asyncio.Future[bool]:
        previous = self.get(entity_id)
        if previous is None:
            raise NotFoundError(self.kind.value, entity_id)

        future = self._document.set([item for item in self._document.value if item.id != entity_id])  # type: ignore[attr-defined]
        logger.info("entity_deleted", kind=self.kind.value, entity_id=entity_id)
        self._emit(EntityEvent(self.kind, EntityChange.DELETED, previous))
        return future

    def _replace(self, updated: E) -> asyncio.Future[bool]:
        return self._document.set(
            [updated if item.id == updated.id else item for item in self._document.value]  # type: ignore[attr-defined]
        )


class EntityStore:
    """Tasks, equipment and homes, each persisted through its own queue."""

    def __init__(self, store: KeyValueStore, key_prefix: str = "homekeeper_") -> None:
        self._listeners: list[Listener] = []
        self.tasks: EntityCollection[Task] = self._collection(store, key_prefix, EntityKind.TASK, Task, "tasks")
        self.equipment: EntityCollection[Equipment] = self._collection(
            store, key_prefix, EntityKind.EQUIPMENT, Equipment, "equipment"
        )
        self.homes: EntityCollection[Home] = self._collection(store, key_prefix, EntityKind.HOME, Home, "homes")

    def _collection(
        self, store: KeyValueStore, prefix: str, kind: EntityKind, model: type[E], name: str
    ) -> EntityCollection[E]:
        document: StoredDocument[list[E]] = StoredDocument(
            store,
            PersistenceQueue(name),
            f"{prefix}{name}",
            TypeAdapter(list[model]),  # type: ignore[valid-type]
            list,
        )
        return EntityCollection(kind, model, document, self._emit)

    async def load(self) -> None:
        for collection in self._collections:
            await collection.load()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Tasks ---

    def add_task(self, task: Task) -> asyncio.Future[bool]:
        return self.tasks.add(task)

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> asyncio.Future[bool]:
        return self.tasks.update(task_id, changes)

    def complete_task(self, task_id: str, completed_at: datetime | None = None) -> asyncio.Future[bool]:
        """Mark a task completed and emit COMPLETED."""
        future = self.tasks.update(task_id, {"status": "completed", "completed_at": completed_at or utcnow()})
        task = self.tasks.get(task_id)
        self._emit(EntityEvent(EntityKind.TASK, EntityChange.COMPLETED, task))
        return future

    def delete_task(self, task_id: str) -> asyncio.Future[bool]:
        return self.tasks.delete(task_id)

    # --- Equipment ---

    def add_equipment(self, equipment: Equipment) -> asyncio.Future[bool]:
        return self.equipment.add(equipment)

    def update_equipment(self, equipment_id: str, changes: Mapping[str, Any]) -> asyncio.Future[bool]:
        return self.equipment.update(equipment_id, changes)

    def delete_equipment(self, equipment_id: str) -> asyncio.Future[bool]:
        return self.equipment.delete(equipment_id)

    # --- Homes ---

    def add_home(self, home: Home) -> asyncio.Future[bool]:
        return self.homes.add(home)

    def update_home(self, home_id: str, changes: Mapping[str, Any]) -> asyncio.Future[bool]:
        return self.homes.update(home_id, changes)

    def delete_home(self, home_id: str) -> asyncio.Future[bool]:
        return self.homes.delete(home_id)

    # --- Lifecycle ---

    @property
    def _collections(self) -> tuple[EntityCollection[Any], ...]:
        return (self.tasks, self.equipment, self.homes)

    async def drain(self) -> None:
        for collection in self._collections:
            await collection.queue.drain()

    async def close(self) -> None:
        for collection in self._collections:
            await collection.queue.close()

    @property
    def stats(self) -> dict[str, dict[str, int]]:
        return {collection.kind.value: collection.queue.stats for collection in self._collections}

    def _emit(self, event: EntityEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("entity_listener_failed", kind=event.kind.value, change=event.change.value)
