"""Keeps notification schedules bound to the tasks and equipment behind them.

Entity events are handled one at a time, in the order they were emitted, so
a create followed by a due-date edit never races its own cancellation.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import structlog

from homekeeper.core.clock import Clock, system_clock
from homekeeper.core.errors import DisabledError, PermissionDeniedError
from homekeeper.models import Equipment, Task
from homekeeper.notifications.scheduler import NotificationScheduler
from homekeeper.notifications.schemas import AchievementData, AchievementKind, NotificationSchedule
from homekeeper.storage.entities import EntityChange, EntityEvent, EntityKind, EntityStore
from homekeeper.storage.queue import PersistenceQueue

logger = structlog.get_logger()

SAVINGS_WINDOW = timedelta(days=7)
SAVINGS_MIN_TASKS = 2
SAVINGS_MIN_AMOUNT = 20


class LifecycleBinder:
    """Reacts to entity events by scheduling and cancelling notifications."""

    def __init__(
        self,
        scheduler: NotificationScheduler,
        entities: EntityStore,
        clock: Clock | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._entities = entities
        self._clock = clock or system_clock()
        self._events = PersistenceQueue("lifecycle-events")
        self._unsubscribe: Callable[[], None] | None = None

    def bind(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._entities.subscribe(self._on_event)

    def unbind(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def drain(self) -> None:
        await self._events.drain()

    async def close(self) -> None:
        self.unbind()
        await self._events.close()

    def _on_event(self, event: EntityEvent) -> None:
        async def handle() -> None:
            await self.handle(event)

        self._events.submit(handle)

    async def handle(self, event: EntityEvent) -> None:
        try:
            if event.kind == EntityKind.TASK:
                await self._handle_task(event.change, event.entity)
            elif event.kind == EntityKind.EQUIPMENT:
                await self._handle_equipment(event.change, event.entity)
        except DisabledError as e:
            logger.info("notification_skipped_disabled", kind=event.kind.value, change=event.change.value, reason=str(e))
        except PermissionDeniedError:
            logger.warning("notification_skipped_no_permission", kind=event.kind.value, change=event.change.value)

    async def _handle_task(self, change: EntityChange, task: Task) -> None:
        if change == EntityChange.CREATED:
            await self._scheduler.schedule_task_notifications([task])
        elif change == EntityChange.DUE_DATE_CHANGED:
            await self._scheduler.cancel_for_task(task.id)
            await self._scheduler.schedule_task_notifications([task])
        elif change == EntityChange.COMPLETED:
            await self._scheduler.cancel_for_task(task.id)
            await self._scheduler.schedule_achievement_notification(
                AchievementKind.COMPLETION,
                AchievementData(task_name=task.title, task_id=task.id, amount=task.money_saved_estimate or 0),
            )
        elif change == EntityChange.DELETED:
            await self._scheduler.cancel_for_task(task.id)

    async def _handle_equipment(self, change: EntityChange, equipment: Equipment) -> None:
        if change == EntityChange.CREATED:
            await self._scheduler.schedule_equipment_notifications([equipment])
        elif change == EntityChange.SERVICE_CHANGED:
            await self._scheduler.cancel_for_equipment(equipment.id)
            await self._scheduler.schedule_equipment_notifications([equipment])
        elif change == EntityChange.DELETED:
            await self._scheduler.cancel_for_equipment(equipment.id)

    async def sync_all(self) -> list[NotificationSchedule]:
        """Initial pass: schedule reminders for open future tasks and all equipment."""
        now = self._clock()
        pending = [task for task in self._entities.tasks.all() if not task.is_completed and task.due_date > now]
        scheduled = await self._scheduler.schedule_task_notifications(pending)
        scheduled += await self._scheduler.schedule_equipment_notifications(self._entities.equipment.all())
        logger.info("initial_notifications_synced", tasks=len(pending), scheduled=len(scheduled))
        return scheduled

    async def review_weekly_savings(self) -> NotificationSchedule | None:
        """Celebrate the week's DIY savings once enough was saved."""
        since = self._clock() - SAVINGS_WINDOW
        recent = [
            task
            for task in self._entities.tasks.all()
            if task.is_completed
            and task.money_saved_estimate
            and task.completed_at is not None
            and task.completed_at >= since
        ]
        if len(recent) < SAVINGS_MIN_TASKS:
            return None

        total = sum(task.money_saved_estimate or 0 for task in recent)
        if total < SAVINGS_MIN_AMOUNT:
            return None

        try:
            return await self._scheduler.schedule_achievement_notification(
                AchievementKind.MONEY_SAVED,
                AchievementData(amount=total, period="this week", count=len(recent)),
            )
        except DisabledError:
            logger.info("weekly_savings_skipped_disabled", amount=total)
            return None
