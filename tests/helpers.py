"""Builders shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from homekeeper.config import Settings
from homekeeper.models import Equipment, Task

# Wednesday morning, ISO week 2026-W10
NOW = datetime(2026, 3, 4, 10, 0, 0, tzinfo=timezone.utc)
WEEK = "2026-W10"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"store_backend": "memory", "timezone": "UTC"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_task(**overrides: Any) -> Task:
    values: dict[str, Any] = {
        "id": "task-1",
        "home_id": "home-1",
        "title": "Clean gutters",
        "category": "Exterior",
        "due_date": NOW + timedelta(days=10),
    }
    values.update(overrides)
    return Task(**values)


def make_equipment(**overrides: Any) -> Equipment:
    values: dict[str, Any] = {
        "id": "eq-1",
        "home_id": "home-1",
        "name": "Furnace",
        "category": "HVAC",
        "type": "Gas Furnace",
        "next_service_due": NOW + timedelta(days=30, hours=2),
    }
    values.update(overrides)
    return Equipment(**values)
