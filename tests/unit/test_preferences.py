"""Unit tests for the preference store."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from homekeeper.notifications.engine import NotificationEngine
from homekeeper.notifications.schemas import NotificationPreferences, NotificationStyle
from homekeeper.storage.kv import MemoryKeyValueStore

PREFERENCES_KEY = "homekeeper_notification_preferences"


class TestPreferenceDefaults:
    @pytest.mark.asyncio
    async def test_defaults_when_nothing_stored(self, engine: NotificationEngine) -> None:
        prefs = engine.preferences.get()
        assert prefs == NotificationPreferences()
        assert prefs.enabled is True
        assert prefs.quiet_hours.start == "21:00"
        assert prefs.quiet_hours.end == "08:00"
        assert prefs.frequency.weekly_limit == 3
        assert prefs.frequency.suggestions is False
        assert prefs.style == NotificationStyle.STANDARD

    @pytest.mark.asyncio
    async def test_get_returns_a_copy(self, engine: NotificationEngine) -> None:
        prefs = engine.preferences.get()
        prefs.frequency.weekly_limit = 99
        assert engine.preferences.get().frequency.weekly_limit == 3

    @pytest.mark.asyncio
    async def test_corrupt_record_falls_back_to_defaults(self, engine_factory, store: MemoryKeyValueStore) -> None:
        store.data[PREFERENCES_KEY] = "{not json"
        engine = await engine_factory()
        assert engine.preferences.get() == NotificationPreferences()


class TestPreferenceUpdate:
    @pytest.mark.asyncio
    async def test_nested_frequency_merge_keeps_other_flags(self, engine: NotificationEngine) -> None:
        updated = engine.preferences.update({"frequency": {"weekly_limit": 2, "suggestions": True}})
        assert updated.frequency.weekly_limit == 2
        assert updated.frequency.suggestions is True
        assert updated.frequency.task_reminders is True
        assert updated.frequency.equipment_alerts is True

    @pytest.mark.asyncio
    async def test_nested_quiet_hours_merge(self, engine: NotificationEngine) -> None:
        updated = engine.preferences.update({"quiet_hours": {"start": "22:30"}})
        assert updated.quiet_hours.start == "22:30"
        assert updated.quiet_hours.end == "08:00"

    @pytest.mark.asyncio
    async def test_invalid_value_rejected_and_state_kept(self, engine: NotificationEngine) -> None:
        with pytest.raises(ValidationError):
            engine.preferences.update({"quiet_hours": {"start": "9pm"}})
        with pytest.raises(ValidationError):
            engine.preferences.update({"frequency": {"weekly_limit": -1}})
        assert engine.preferences.get() == NotificationPreferences()

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, engine: NotificationEngine) -> None:
        with pytest.raises(ValueError, match="Unknown preference fields"):
            engine.preferences.update({"volume": 11})

    @pytest.mark.asyncio
    async def test_enable_and_disable(self, engine: NotificationEngine) -> None:
        assert engine.preferences.disable().enabled is False
        assert engine.preferences.get().enabled is False
        assert engine.preferences.enable().enabled is True

    @pytest.mark.asyncio
    async def test_update_persisted_and_reloaded(self, engine_factory, store: MemoryKeyValueStore) -> None:
        engine = await engine_factory()
        engine.preferences.update({"style": "gentle", "frequency": {"weekly_limit": 4}})
        await engine.drain()

        stored = json.loads(store.data[PREFERENCES_KEY])
        assert stored["style"] == "gentle"
        assert stored["frequency"]["weekly_limit"] == 4

        reloaded = await engine_factory()
        prefs = reloaded.preferences.get()
        assert prefs.style == NotificationStyle.GENTLE
        assert prefs.frequency.weekly_limit == 4
