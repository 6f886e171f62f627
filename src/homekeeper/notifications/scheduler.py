"""Notification scheduling.

The scheduler turns tasks, equipment and achievements into platform requests
plus local NotificationSchedule records. It applies category gating, quiet-hour
deferral and, for batch scheduling, the rolling ISO-week send cap.

Record lifecycle::

    pending -> delivered -> opened | dismissed

Cancellation removes the record from pending or from delivered before it is
resolved.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

import structlog

from homekeeper.config import Settings
from homekeeper.core.clock import Clock, system_clock
from homekeeper.core.errors import PermissionDeniedError
from homekeeper.core.week_utils import get_week_iso
from homekeeper.models import Equipment, Home, Task
from homekeeper.notifications import rules
from homekeeper.notifications.content import ContentGenerator
from homekeeper.notifications.engagement import EngagementTracker
from homekeeper.notifications.platform import NotificationPlatform, PlatformOutcome
from homekeeper.notifications.preferences import PreferenceStore
from homekeeper.notifications.schemas import (
    AchievementData,
    AchievementKind,
    DeliveryTiming,
    EquipmentAlertKind,
    EquipmentData,
    NotificationContent,
    NotificationPriority,
    NotificationSchedule,
    NotificationTiming,
    NotificationType,
    ReminderKind,
    SeasonalData,
    TaskReminderData,
    WeatherData,
    WeatherInfo,
    WeeklyCount,
)
from homekeeper.storage.documents import StoredDocument, commit_together

logger = structlog.get_logger()

ACHIEVEMENT_TYPES = {
    AchievementKind.MONEY_SAVED: NotificationType.MONEY_SAVED,
    AchievementKind.STREAK: NotificationType.STREAK,
    AchievementKind.COMPLETION: NotificationType.ACHIEVEMENT,
    AchievementKind.MILESTONE: NotificationType.ACHIEVEMENT,
}

WEATHER_HOUR = 8
SEASONAL_HOUR = 9


def new_notification_id() -> str:
    return f"notification_{uuid.uuid4().hex}"


class NotificationScheduler:
    """Computes fire times and keeps schedule records in step with the platform."""

    def __init__(
        self,
        preferences: PreferenceStore,
        engagement: EngagementTracker,
        content: ContentGenerator,
        platform: NotificationPlatform,
        schedules: StoredDocument[list[NotificationSchedule]],
        weekly_count: StoredDocument[WeeklyCount],
        settings: Settings,
        clock: Clock | None = None,
        id_factory: Callable[[], str] = new_notification_id,
    ) -> None:
        self._preferences = preferences
        self._engagement = engagement
        self._content = content
        self._platform = platform
        self._schedules = schedules
        self._weekly_count = weekly_count
        self._settings = settings
        self._clock = clock or system_clock(settings.timezone)
        self._new_id = id_factory
        self._batch_lock = asyncio.Lock()

    async def load(self) -> None:
        await self._schedules.load()
        await self._weekly_count.load()

    # --- Reads ---

    def get_scheduled_notifications(self) -> list[NotificationSchedule]:
        return [schedule.model_copy() for schedule in self._schedules.value]

    def get_schedule(self, schedule_id: str) -> NotificationSchedule | None:
        for schedule in self._schedules.value:
            if schedule.id == schedule_id:
                return schedule.model_copy()
        return None

    def get_weekly_count(self) -> int:
        """Capped sends in the current ISO week; a stale week reads as zero."""
        stored = self._weekly_count.value
        if stored.week != get_week_iso(self._clock()):
            return 0
        return stored.count

    # --- Single schedules ---

    async def schedule_task_reminder(self, task: Task, kind: ReminderKind) -> NotificationSchedule | None:
        """Schedule one reminder for a task. Returns None when its time has passed.

        Raises DisabledError or PermissionDeniedError.
        """
        return await self._schedule_task_reminder(task, kind, counted=False)

    async def schedule_equipment_alert(
        self, equipment: Equipment, kind: EquipmentAlertKind
    ) -> NotificationSchedule | None:
        """Schedule a service-due or attention-needed alert for equipment.

        Service-due alerts fire a week before next_service_due and return None
        when that moment has passed. Raises DisabledError or PermissionDeniedError.
        """
        return await self._schedule_equipment_alert(equipment, kind, counted=False)

    async def schedule_achievement_notification(
        self, kind: AchievementKind, data: AchievementData | Mapping[str, Any] | None = None
    ) -> NotificationSchedule:
        type_ = ACHIEVEMENT_TYPES[kind]
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)

        payload = AchievementData.model_validate({**self._as_dict(data), "kind": kind})
        now = self._clock()
        content = self._content.generate(type_, payload, rules.build_context(now), prefs.style)
        return await self._schedule(
            type_,
            content,
            now + timedelta(seconds=self._settings.immediate_delay_seconds),
            priority=content.priority,
            timing=NotificationTiming.IMMEDIATE,
            related_task_id=payload.task_id,
        )

    async def schedule_seasonal_suggestions(self, home: Home | None = None, season: str | None = None) -> NotificationSchedule | None:
        """Schedule a digest of up to two seasonal suggestions for the coming Saturday morning."""
        type_ = NotificationType.SEASONAL_SUGGESTION
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)

        now = self._clock()
        season = season or rules.season_for(now.month)
        suggestions = rules.seasonal_suggestions(season)
        if not suggestions:
            logger.info("no_seasonal_suggestions", season=season)
            return None

        when = rules.next_weekday_at(now, rules.SATURDAY, SEASONAL_HOUR)
        profile = self._engagement.get_profile()
        if prefs.delivery_timing == DeliveryTiming.SMART and profile.optimal_delivery_time:
            when = rules.at_hour_after(when, profile.optimal_delivery_time, now)

        payload = SeasonalData(suggestions=suggestions, season=season, home=home)
        content = self._content.generate(type_, payload, rules.build_context(now), prefs.style)
        return await self._schedule(
            type_,
            content,
            when,
            priority=content.priority,
            timing=NotificationTiming.BATCH,
        )

    async def schedule_weather_opportunity(self, tasks: Iterable[Task], weather: WeatherInfo) -> NotificationSchedule | None:
        """Suggest outdoor tasks when the weather is good for them.

        Fires at 08:00 today, or right away when that has passed. Returns None
        for bad weather or when no open outdoor task exists.
        """
        type_ = NotificationType.WEATHER_OPPORTUNITY
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)

        outdoor = [task for task in tasks if rules.is_outdoor_task(task) and not task.is_completed]
        if not outdoor or not rules.is_good_weather(weather.condition):
            logger.debug("weather_opportunity_skipped", outdoor_tasks=len(outdoor), condition=weather.condition)
            return None

        now = self._clock()
        when = now.replace(hour=WEATHER_HOUR, minute=0, second=0, microsecond=0)
        if when <= now:
            when = now + timedelta(seconds=self._settings.immediate_delay_seconds)

        weather = weather.model_copy(update={"is_good_for_outdoor_work": True})
        payload = WeatherData(outdoor_tasks=outdoor, weather=weather)
        content = self._content.generate(type_, payload, rules.build_context(now, weather), prefs.style)
        return await self._schedule(
            type_,
            content,
            when,
            priority=content.priority,
            timing=NotificationTiming.OPTIMAL,
        )

    # --- Batches ---

    async def schedule_task_notifications(self, tasks: Iterable[Task]) -> list[NotificationSchedule]:
        """Schedule the style's reminder set for each task, honoring the weekly cap.

        Tasks due within the minimum lead time are skipped. Once the cap is
        reached the rest of the batch is dropped.
        """
        async with self._batch_lock:
            prefs = self._preferences.get()
            if not prefs.enabled or not prefs.frequency.task_reminders:
                logger.info("task_reminders_disabled")
                return []

            min_lead = timedelta(hours=self._settings.task_reminder_min_lead_hours)
            scheduled: list[NotificationSchedule] = []
            for task in tasks:
                now = self._clock()
                if task.is_completed or task.due_date - now < min_lead:
                    continue
                for kind, fire_at in rules.reminder_times(task.due_date, prefs.style):
                    if fire_at <= now:
                        continue
                    if self._cap_reached():
                        return scheduled
                    schedule = await self._schedule_task_reminder(task, kind, counted=True)
                    if schedule is not None:
                        scheduled.append(schedule)
            return scheduled

    async def schedule_equipment_notifications(self, equipment: Iterable[Equipment]) -> list[NotificationSchedule]:
        """Schedule service-due and attention alerts for active equipment, honoring the weekly cap."""
        async with self._batch_lock:
            prefs = self._preferences.get()
            if not prefs.enabled or not prefs.frequency.equipment_alerts:
                logger.info("equipment_alerts_disabled")
                return []

            scheduled: list[NotificationSchedule] = []
            for item in equipment:
                if item.active is False:
                    continue
                now = self._clock()
                kinds = []
                if item.next_service_due and item.next_service_due - rules.EQUIPMENT_SERVICE_LEAD > now:
                    kinds.append(EquipmentAlertKind.SERVICE_DUE)
                if item.needs_attention:
                    kinds.append(EquipmentAlertKind.ATTENTION_NEEDED)
                for kind in kinds:
                    if self._cap_reached():
                        return scheduled
                    schedule = await self._schedule_equipment_alert(item, kind, counted=True)
                    if schedule is not None:
                        scheduled.append(schedule)
            return scheduled

    # --- Cancellation ---

    async def cancel_notification(self, schedule_id: str) -> bool:
        """Cancel one schedule. Returns False if no local record existed."""
        schedule = self.get_schedule(schedule_id)
        if schedule is None or not schedule.resolved:
            await self._platform.cancel(schedule_id)
        if schedule is None:
            logger.warning("schedule_not_found", schedule_id=schedule_id)
            return False

        self._schedules.set([s for s in self._schedules.value if s.id != schedule_id])
        logger.info("notification_cancelled", schedule_id=schedule_id)
        return True

    async def cancel_for_task(self, task_id: str) -> int:
        return await self._cancel_related("related_task_id", "task_id", task_id)

    async def cancel_for_equipment(self, equipment_id: str) -> int:
        return await self._cancel_related("related_equipment_id", "equipment_id", equipment_id)

    async def cancel_all(self) -> None:
        """Cancel every platform request and drop all local records."""
        await self._platform.cancel_all()
        self._schedules.set([])
        logger.info("all_notifications_cancelled")

    # --- Platform responses ---

    async def handle_platform_response(
        self,
        request_id: str,
        outcome: PlatformOutcome,
        at: datetime | None = None,
        action: str | None = None,
    ) -> None:
        """Advance a schedule's lifecycle and forward the outcome to engagement tracking."""
        at = at or self._clock()
        schedule = self.get_schedule(request_id)
        if schedule is None:
            logger.warning("response_for_unknown_schedule", schedule_id=request_id, outcome=outcome.value)
            return

        if outcome == PlatformOutcome.ACTION:
            self._engagement.track_action(request_id, action or "default")
            return

        if outcome == PlatformOutcome.DELIVERED:
            if schedule.delivered:
                return
            self._store_schedule(schedule.model_copy(update={"delivered": True, "updated_at": at}))
            self._engagement.track_sent(request_id, schedule.type, at)
            return

        if schedule.resolved:
            logger.warning("schedule_already_resolved", schedule_id=request_id, outcome=outcome.value)
            return

        if not schedule.delivered:
            self._engagement.track_sent(request_id, schedule.type, at)

        if outcome == PlatformOutcome.OPENED:
            self._store_schedule(
                schedule.model_copy(update={"delivered": True, "opened": True, "updated_at": at})
            )
            self._engagement.track_opened(request_id, opened_at=at)
        else:
            self._store_schedule(
                schedule.model_copy(update={"delivered": True, "dismissed": True, "updated_at": at})
            )
            self._engagement.track_dismissed(request_id, at)

    # --- Internals ---

    async def _schedule_task_reminder(
        self, task: Task, kind: ReminderKind, *, counted: bool
    ) -> NotificationSchedule | None:
        type_ = NotificationType.TASK_REMINDER
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)

        now = self._clock()
        target = task.due_date - rules.REMINDER_OFFSETS[kind]
        if target <= now:
            logger.debug("reminder_in_past", task_id=task.id, kind=kind.value)
            return None

        content = self._content.generate(
            type_, TaskReminderData(task=task, reminder_type=kind), rules.build_context(now), prefs.style
        )
        content = content.model_copy(
            update={
                "action_url": f"/tasks/{task.id}",
                "metadata": {**content.metadata, "reminder_type": kind.value, "due_date": task.due_date.isoformat()},
            }
        )
        return await self._schedule(
            type_,
            content,
            target,
            priority=rules.task_priority(task),
            timing=NotificationTiming.SCHEDULED,
            related_task_id=task.id,
            counted=counted,
        )

    async def _schedule_equipment_alert(
        self, equipment: Equipment, kind: EquipmentAlertKind, *, counted: bool
    ) -> NotificationSchedule | None:
        if kind == EquipmentAlertKind.SERVICE_DUE:
            type_, service_type = NotificationType.EQUIPMENT_SERVICE, "routine"
        else:
            type_, service_type = NotificationType.EQUIPMENT_ATTENTION, "attention"
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)

        now = self._clock()
        if kind == EquipmentAlertKind.SERVICE_DUE:
            if equipment.next_service_due is None:
                msg = f"Equipment {equipment.id} has no next_service_due"
                raise ValueError(msg)
            target = equipment.next_service_due - rules.EQUIPMENT_SERVICE_LEAD
            if target <= now:
                logger.debug("service_alert_in_past", equipment_id=equipment.id)
                return None
            timing = NotificationTiming.SCHEDULED
        else:
            target = now + timedelta(seconds=self._settings.immediate_delay_seconds)
            timing = NotificationTiming.IMMEDIATE

        content = self._content.generate(
            type_, EquipmentData(equipment=equipment, service_type=service_type), rules.build_context(now), prefs.style
        )
        content = content.model_copy(
            update={
                "action_url": f"/equipment/{equipment.id}",
                "metadata": {**content.metadata, "alert_type": kind.value, "category": equipment.category},
            }
        )
        return await self._schedule(
            type_,
            content,
            target,
            priority=content.priority,
            timing=timing,
            related_equipment_id=equipment.id,
            counted=counted,
        )

    async def _schedule(
        self,
        type_: NotificationType,
        content: NotificationContent,
        when: datetime,
        *,
        priority: NotificationPriority,
        timing: NotificationTiming,
        related_task_id: str | None = None,
        related_equipment_id: str | None = None,
        counted: bool = False,
    ) -> NotificationSchedule:
        prefs = self._preferences.get()
        rules.ensure_enabled(prefs, type_)
        if not await self._platform.permission_granted():
            raise PermissionDeniedError("Notification permission not granted")

        now = self._clock()
        fire_at = rules.defer_for_quiet_hours(when.astimezone(now.tzinfo), prefs.quiet_hours)
        schedule = NotificationSchedule(
            id=self._new_id(),
            type=type_,
            priority=priority,
            timing=timing,
            scheduled_for=fire_at,
            content=content,
            related_task_id=related_task_id,
            related_equipment_id=related_equipment_id,
            created_at=now,
            updated_at=now,
        )
        data = {
            "schedule_id": schedule.id,
            "type": type_.value,
            "priority": priority.value,
            "task_id": related_task_id,
            "equipment_id": related_equipment_id,
            "action_url": content.action_url,
        }
        await self._platform.schedule_at(schedule.id, content, fire_at, data)

        schedules = [*self._schedules.value, schedule]
        if counted:
            current = self._clock()
            count = WeeklyCount(week=get_week_iso(current), count=self.get_weekly_count() + 1)
            commit_together((self._schedules, schedules), (self._weekly_count, count))
        else:
            self._schedules.set(schedules)

        logger.info(
            "notification_scheduled",
            schedule_id=schedule.id,
            type=type_.value,
            scheduled_for=fire_at.isoformat(),
            counted=counted,
        )
        return schedule

    async def _cancel_related(self, field: str, data_key: str, related_id: str) -> int:
        related = [s for s in self._schedules.value if getattr(s, field) == related_id]
        cancelled: set[str] = set()
        for schedule in related:
            if not schedule.resolved:
                await self._platform.cancel(schedule.id)
                cancelled.add(schedule.id)

        # Requests whose local record never got written
        for request in await self._platform.list_pending():
            if request.data.get(data_key) == related_id and request.identifier not in cancelled:
                await self._platform.cancel(request.identifier)
                cancelled.add(request.identifier)

        remaining = [s for s in self._schedules.value if getattr(s, field) != related_id]
        removed = len(self._schedules.value) - len(remaining)
        if removed:
            self._schedules.set(remaining)
        logger.info("related_notifications_cancelled", field=field, related_id=related_id, removed=removed)
        return removed

    def _cap_reached(self) -> bool:
        limit = self._preferences.get().frequency.weekly_limit
        if self.get_weekly_count() >= limit:
            logger.info("weekly_limit_reached", limit=limit)
            return True
        return False

    def _store_schedule(self, updated: NotificationSchedule) -> None:
        self._schedules.set([updated if s.id == updated.id else s for s in self._schedules.value])

    @staticmethod
    def _as_dict(data: AchievementData | Mapping[str, Any] | None) -> dict[str, Any]:
        if data is None:
            return {}
        if isinstance(data, AchievementData):
            return data.model_dump()
        return dict(data)
