"""Persisted notification preferences."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from homekeeper.notifications.schemas import NotificationPreferences
from homekeeper.storage.documents import StoredDocument

logger = structlog.get_logger()

NESTED_FIELDS = ("quiet_hours", "frequency")


class PreferenceStore:
    """Singleton preference record backed by a StoredDocument."""

    def __init__(self, document: StoredDocument[NotificationPreferences]) -> None:
        self._document = document

    async def load(self) -> NotificationPreferences:
        return await self._document.load()

    def get(self) -> NotificationPreferences:
        """Current preferences, or the defaults when none were stored."""
        return self._document.value.model_copy(deep=True)

    def update(self, partial: Mapping[str, Any]) -> NotificationPreferences:
        """Merge a partial update and persist the result.

        Nested ``quiet_hours`` and ``frequency`` mappings are merged key by key,
        so ``{"frequency": {"weekly_limit": 2}}`` leaves the category flags alone.
        Raises pydantic.ValidationError if the merged record is invalid.
        """
        unknown = set(partial) - set(NotificationPreferences.model_fields)
        if unknown:
            msg = f"Unknown preference fields: {sorted(unknown)}"
            raise ValueError(msg)

        merged = self._document.value.model_dump()
        for key, value in partial.items():
            if isinstance(value, BaseModel):
                value = value.model_dump()
            if key in NESTED_FIELDS and isinstance(value, Mapping):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        updated = NotificationPreferences.model_validate(merged)
        self._document.set(updated)
        logger.info("preferences_updated", fields=sorted(partial))
        return updated.model_copy(deep=True)

    def enable(self) -> NotificationPreferences:
        return self.update({"enabled": True})

    def disable(self) -> NotificationPreferences:
        return self.update({"enabled": False})
