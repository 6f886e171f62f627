"""Shared test fixtures."""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio

from helpers import FakeClock, make_settings
from homekeeper.config import Settings
from homekeeper.notifications.engine import NotificationEngine, build_engine
from homekeeper.notifications.platform import LocalNotificationPlatform
from homekeeper.storage.kv import MemoryKeyValueStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def platform(clock: FakeClock) -> LocalNotificationPlatform:
    return LocalNotificationPlatform(clock=clock)


EngineFactory = Callable[..., Awaitable[NotificationEngine]]


@pytest_asyncio.fixture
async def engine_factory(
    clock: FakeClock, store: MemoryKeyValueStore
) -> AsyncGenerator[EngineFactory, None]:
    """Build engines over the shared in-memory store; all are closed on teardown."""
    engines: list[NotificationEngine] = []

    async def factory(
        settings: Settings | None = None,
        platform: LocalNotificationPlatform | None = None,
        start: bool = True,
        **overrides: Any,
    ) -> NotificationEngine:
        engine = build_engine(
            settings or make_settings(**overrides),
            store=store,
            platform=platform or LocalNotificationPlatform(clock=clock),
            clock=clock,
            rng=random.Random(7),
        )
        if start:
            await engine.start()
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.close()


@pytest_asyncio.fixture
async def engine(engine_factory: EngineFactory) -> NotificationEngine:
    return await engine_factory()
