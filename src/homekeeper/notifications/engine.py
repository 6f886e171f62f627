"""Composition root for the notification engine.

build_engine() constructs every component explicitly and wires them
together; nothing in the package is a module-level singleton.
"""

from __future__ import annotations

import random
from typing import Any

import structlog
from pydantic import TypeAdapter

from homekeeper.config import Settings, get_settings
from homekeeper.core.clock import Clock, system_clock
from homekeeper.notifications.content import ContentGenerator
from homekeeper.notifications.engagement import EngagementTracker
from homekeeper.notifications.lifecycle import LifecycleBinder
from homekeeper.notifications.optimizer import FrequencyOptimizer
from homekeeper.notifications.platform import LocalNotificationPlatform, NotificationPlatform
from homekeeper.notifications.preferences import PreferenceStore
from homekeeper.notifications.scheduler import NotificationScheduler
from homekeeper.notifications.schemas import (
    NotificationAnalytics,
    NotificationPreferences,
    NotificationSchedule,
    UserEngagementProfile,
    WeeklyCount,
    WeekStats,
)
from homekeeper.storage.documents import StoredDocument
from homekeeper.storage.entities import EntityStore
from homekeeper.storage.kv import KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from homekeeper.storage.queue import PersistenceQueue

logger = structlog.get_logger()

# Key suffixes under settings.storage_key_prefix
PREFERENCES_KEY = "notification_preferences"
SCHEDULE_KEY = "notification_schedule"
ANALYTICS_KEY = "notification_analytics"
PROFILE_KEY = "user_engagement_profile"
WEEKLY_COUNT_KEY = "weekly_notification_count"
WEEKLY_STATS_KEY = "weekly_notification_stats"


def create_store(settings: Settings) -> KeyValueStore:
    if settings.store_backend == "memory":
        return MemoryKeyValueStore()
    if settings.store_backend == "redis":
        return RedisKeyValueStore.from_url(settings.redis_url)
    msg = f"Unknown store backend: {settings.store_backend}"
    raise ValueError(msg)


class NotificationEngine:
    """All notification components, wired and sharing one store."""

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        platform: NotificationPlatform,
        clock: Clock,
        rng: random.Random,
    ) -> None:
        self.settings = settings
        self.store = store
        self.platform = platform
        self.clock = clock

        prefix = settings.storage_key_prefix
        self.queues = {
            "preferences": PersistenceQueue("preferences"),
            "schedules": PersistenceQueue("schedules"),
            "analytics": PersistenceQueue("analytics"),
        }

        def document(queue: str, name: str, type_: Any, default: Any) -> StoredDocument[Any]:
            return StoredDocument(store, self.queues[queue], f"{prefix}{name}", TypeAdapter(type_), default)

        self.preferences = PreferenceStore(
            document("preferences", PREFERENCES_KEY, NotificationPreferences, NotificationPreferences)
        )
        self.content = ContentGenerator(rng=rng, clock=clock)
        self.engagement = EngagementTracker(
            document("analytics", ANALYTICS_KEY, list[NotificationAnalytics], list),
            document("analytics", PROFILE_KEY, UserEngagementProfile, UserEngagementProfile),
            document("analytics", WEEKLY_STATS_KEY, dict[str, WeekStats], dict),
            settings,
            clock=clock,
            rng=rng,
        )
        self.scheduler = NotificationScheduler(
            self.preferences,
            self.engagement,
            self.content,
            platform,
            document("schedules", SCHEDULE_KEY, list[NotificationSchedule], list),
            document("schedules", WEEKLY_COUNT_KEY, WeeklyCount, lambda: WeeklyCount(week="")),
            settings,
            clock=clock,
        )
        self.entities = EntityStore(store, key_prefix=prefix)
        self.lifecycle = LifecycleBinder(self.scheduler, self.entities, clock=clock)
        self.optimizer = FrequencyOptimizer(
            self.preferences,
            self.engagement,
            settings,
            clock=clock,
            weekly_jobs=[self.lifecycle.review_weekly_savings],
        )
        self._started = False

    async def start(self, sync: bool = False) -> bool:
        """Load persisted state, request permission and bind to entity events.

        Returns whether notification permission was granted. With ``sync`` the
        initial scheduling pass runs for existing tasks and equipment.
        """
        if self._started:
            return await self.platform.permission_granted()

        await self.preferences.load()
        await self.engagement.load()
        await self.scheduler.load()
        await self.entities.load()

        granted = await self.platform.request_permission()
        self.platform.on_response(self.scheduler.handle_platform_response)
        self.lifecycle.bind()
        self._started = True
        logger.info("notification_engine_started", permission_granted=granted, store=type(self.store).__name__)

        if sync and granted and self.preferences.get().enabled:
            await self.lifecycle.sync_all()
        return granted

    async def drain(self) -> None:
        """Wait for queued entity events and every pending store write."""
        await self.lifecycle.drain()
        await self.entities.drain()
        for queue in self.queues.values():
            await queue.drain()

    async def close(self) -> None:
        await self.lifecycle.close()
        await self.entities.close()
        for queue in self.queues.values():
            await queue.close()
        await self.platform.close()
        await self.store.close()
        self._started = False
        logger.info("notification_engine_closed")

    @property
    def stats(self) -> dict[str, dict[str, int]]:
        stats = {name: queue.stats for name, queue in self.queues.items()}
        stats.update(self.entities.stats)
        return stats


def build_engine(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    platform: NotificationPlatform | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
) -> NotificationEngine:
    settings = settings or get_settings()
    clock = clock or system_clock(settings.timezone)
    return NotificationEngine(
        settings=settings,
        store=store if store is not None else create_store(settings),
        platform=platform or LocalNotificationPlatform(clock=clock),
        clock=clock,
        rng=rng or random.Random(),
    )
