"""Unit tests for the notification scheduler."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from helpers import NOW, WEEK, FakeClock, make_equipment, make_task
from homekeeper.core.errors import DisabledError, PermissionDeniedError
from homekeeper.notifications.engine import NotificationEngine
from homekeeper.notifications.platform import LocalNotificationPlatform, PlatformOutcome
from homekeeper.notifications.schemas import (
    AchievementData,
    AchievementKind,
    EquipmentAlertKind,
    NotificationContent,
    NotificationPriority,
    NotificationTiming,
    NotificationType,
    ReminderKind,
    ScheduleStatus,
    WeatherInfo,
)
from homekeeper.storage.kv import MemoryKeyValueStore

UTC = timezone.utc
COUNT_KEY = "homekeeper_weekly_notification_count"


def preload_count(store: MemoryKeyValueStore, week: str, count: int) -> None:
    store.data[COUNT_KEY] = json.dumps({"week": week, "count": count})


async def pending_ids(engine: NotificationEngine) -> set[str]:
    return {request.identifier for request in await engine.platform.list_pending()}


class TestTaskReminders:
    @pytest.mark.asyncio
    async def test_single_reminder(self, engine: NotificationEngine) -> None:
        task = make_task()
        schedule = await engine.scheduler.schedule_task_reminder(task, ReminderKind.DUE)

        assert schedule is not None
        assert schedule.type == NotificationType.TASK_REMINDER
        assert schedule.scheduled_for == task.due_date - timedelta(days=1)
        assert schedule.related_task_id == "task-1"
        assert schedule.timing == NotificationTiming.SCHEDULED
        assert schedule.status == ScheduleStatus.PENDING
        assert schedule.content.action_url == "/tasks/task-1"
        assert "Clean gutters" in schedule.content.title
        assert schedule.content.metadata["reminder_type"] == "due"

        assert engine.scheduler.get_scheduled_notifications() == [schedule]
        assert await pending_ids(engine) == {schedule.id}

    @pytest.mark.asyncio
    async def test_reminder_in_past_returns_none(self, engine: NotificationEngine) -> None:
        task = make_task(due_date=NOW + timedelta(hours=12))
        assert await engine.scheduler.schedule_task_reminder(task, ReminderKind.ADVANCE) is None
        assert engine.scheduler.get_scheduled_notifications() == []

    @pytest.mark.asyncio
    async def test_reminder_in_quiet_hours_deferred(self, engine: NotificationEngine) -> None:
        task = make_task(due_date=datetime(2026, 3, 14, 23, 0, tzinfo=UTC))
        schedule = await engine.scheduler.schedule_task_reminder(task, ReminderKind.DUE)
        assert schedule is not None
        assert schedule.scheduled_for == datetime(2026, 3, 14, 8, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_disabled_category_raises(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"task_reminders": False}})
        with pytest.raises(DisabledError) as exc_info:
            await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert exc_info.value.category == "task_reminders"

    @pytest.mark.asyncio
    async def test_globally_disabled_raises(self, engine: NotificationEngine) -> None:
        engine.preferences.disable()
        with pytest.raises(DisabledError):
            await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)

    @pytest.mark.asyncio
    async def test_permission_denied(self, engine_factory, clock: FakeClock) -> None:
        engine = await engine_factory(platform=LocalNotificationPlatform(clock=clock, grant_permission=False))
        with pytest.raises(PermissionDeniedError):
            await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert engine.scheduler.get_scheduled_notifications() == []


class TestTaskBatch:
    @pytest.mark.asyncio
    async def test_standard_style_schedules_advance_and_due(self, engine: NotificationEngine) -> None:
        task = make_task()
        scheduled = await engine.scheduler.schedule_task_notifications([task])

        assert [s.content.metadata["reminder_type"] for s in scheduled] == ["advance", "due"]
        for schedule in scheduled:
            assert schedule.scheduled_for < task.due_date
            assert not (schedule.scheduled_for.hour >= 21 or schedule.scheduled_for.hour < 8)
        assert engine.scheduler.get_weekly_count() == 2

    @pytest.mark.parametrize(
        ("due_date", "expected"),
        [
            (
                datetime(2026, 3, 14, 22, 30, tzinfo=UTC),
                [datetime(2026, 3, 12, 8, 0, tzinfo=UTC), datetime(2026, 3, 14, 8, 0, tzinfo=UTC)],
            ),
            (
                datetime(2026, 3, 14, 6, 0, tzinfo=UTC),
                [datetime(2026, 3, 11, 8, 0, tzinfo=UTC), datetime(2026, 3, 13, 8, 0, tzinfo=UTC)],
            ),
        ],
    )
    @pytest.mark.asyncio
    async def test_quiet_hour_due_times_deferred_to_morning(
        self, engine: NotificationEngine, due_date: datetime, expected: list[datetime]
    ) -> None:
        task = make_task(due_date=due_date)
        scheduled = await engine.scheduler.schedule_task_notifications([task])

        assert [s.scheduled_for for s in scheduled] == expected
        assert all(s.scheduled_for < task.due_date for s in scheduled)

    @pytest.mark.asyncio
    async def test_persistent_style_adds_overdue(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"style": "persistent"})
        task = make_task()
        scheduled = await engine.scheduler.schedule_task_notifications([task])
        assert [s.content.metadata["reminder_type"] for s in scheduled] == ["advance", "due", "overdue"]
        assert scheduled[-1].scheduled_for == task.due_date

    @pytest.mark.asyncio
    async def test_skips_completed_and_imminent_tasks(self, engine: NotificationEngine) -> None:
        tasks = [
            make_task(id="done", status="completed"),
            make_task(id="soon", due_date=NOW + timedelta(hours=20)),
        ]
        assert await engine.scheduler.schedule_task_notifications(tasks) == []

    @pytest.mark.asyncio
    async def test_disabled_batch_returns_empty(self, engine: NotificationEngine) -> None:
        engine.preferences.disable()
        assert await engine.scheduler.schedule_task_notifications([make_task()]) == []

    @pytest.mark.asyncio
    async def test_cap_reached_schedules_nothing(self, engine_factory, store: MemoryKeyValueStore) -> None:
        preload_count(store, WEEK, 3)
        engine = await engine_factory()

        assert await engine.scheduler.schedule_task_notifications([make_task()]) == []
        assert engine.scheduler.get_weekly_count() == 3
        assert await pending_ids(engine) == set()

    @pytest.mark.asyncio
    async def test_cap_stops_mid_batch(self, engine: NotificationEngine, store: MemoryKeyValueStore) -> None:
        tasks = [make_task(), make_task(id="task-2", title="Replace filter")]
        scheduled = await engine.scheduler.schedule_task_notifications(tasks)

        assert len(scheduled) == 3
        assert engine.scheduler.get_weekly_count() == 3
        await engine.drain()
        assert json.loads(store.data[COUNT_KEY]) == {"week": WEEK, "count": 3}

    @pytest.mark.asyncio
    async def test_stale_week_count_resets(self, engine_factory, store: MemoryKeyValueStore) -> None:
        preload_count(store, "2026-W09", 3)
        engine = await engine_factory()
        assert engine.scheduler.get_weekly_count() == 0

        scheduled = await engine.scheduler.schedule_task_notifications([make_task()])
        assert len(scheduled) == 2
        assert engine.scheduler.get_weekly_count() == 2

    @pytest.mark.asyncio
    async def test_single_schedules_do_not_count(self, engine: NotificationEngine) -> None:
        await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        await engine.scheduler.schedule_achievement_notification(AchievementKind.STREAK, {"count": 3})
        assert engine.scheduler.get_weekly_count() == 0


class TestEquipmentAlerts:
    @pytest.mark.asyncio
    async def test_service_due_a_week_before(self, engine: NotificationEngine) -> None:
        equipment = make_equipment()
        schedule = await engine.scheduler.schedule_equipment_alert(equipment, EquipmentAlertKind.SERVICE_DUE)

        assert schedule is not None
        assert schedule.type == NotificationType.EQUIPMENT_SERVICE
        assert schedule.scheduled_for == equipment.next_service_due - timedelta(days=7)
        assert schedule.related_equipment_id == "eq-1"
        assert schedule.content.action_url == "/equipment/eq-1"
        assert schedule.priority == NotificationPriority.HIGH

    @pytest.mark.asyncio
    async def test_priority_follows_selected_template(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"style": "gentle"})
        schedule = await engine.scheduler.schedule_equipment_alert(make_equipment(), EquipmentAlertKind.SERVICE_DUE)
        assert schedule is not None
        assert schedule.content.title == "⚙️ Furnace Maintenance"
        assert schedule.priority == NotificationPriority.NORMAL

    @pytest.mark.asyncio
    async def test_attention_fires_shortly(self, engine: NotificationEngine) -> None:
        schedule = await engine.scheduler.schedule_equipment_alert(
            make_equipment(needs_attention=True), EquipmentAlertKind.ATTENTION_NEEDED
        )
        assert schedule is not None
        assert schedule.type == NotificationType.EQUIPMENT_ATTENTION
        assert schedule.scheduled_for == NOW + timedelta(seconds=2)
        assert schedule.priority == NotificationPriority.HIGH
        assert schedule.timing == NotificationTiming.IMMEDIATE

    @pytest.mark.asyncio
    async def test_service_due_in_past_returns_none(self, engine: NotificationEngine) -> None:
        equipment = make_equipment(next_service_due=NOW + timedelta(days=3))
        assert await engine.scheduler.schedule_equipment_alert(equipment, EquipmentAlertKind.SERVICE_DUE) is None

    @pytest.mark.asyncio
    async def test_service_due_without_date_rejected(self, engine: NotificationEngine) -> None:
        with pytest.raises(ValueError, match="next_service_due"):
            await engine.scheduler.schedule_equipment_alert(
                make_equipment(next_service_due=None), EquipmentAlertKind.SERVICE_DUE
            )

    @pytest.mark.asyncio
    async def test_batch_skips_inactive(self, engine: NotificationEngine) -> None:
        items = [
            make_equipment(id="off", active=False, needs_attention=True),
            make_equipment(id="eq-1", needs_attention=True),
        ]
        scheduled = await engine.scheduler.schedule_equipment_notifications(items)
        assert [s.type for s in scheduled] == [NotificationType.EQUIPMENT_SERVICE, NotificationType.EQUIPMENT_ATTENTION]
        assert {s.related_equipment_id for s in scheduled} == {"eq-1"}
        assert engine.scheduler.get_weekly_count() == 2


class TestAchievements:
    @pytest.mark.parametrize(
        ("kind", "type_"),
        [
            (AchievementKind.MONEY_SAVED, NotificationType.MONEY_SAVED),
            (AchievementKind.STREAK, NotificationType.STREAK),
            (AchievementKind.COMPLETION, NotificationType.ACHIEVEMENT),
            (AchievementKind.MILESTONE, NotificationType.ACHIEVEMENT),
        ],
    )
    @pytest.mark.asyncio
    async def test_kind_maps_to_type(self, engine: NotificationEngine, kind, type_) -> None:
        schedule = await engine.scheduler.schedule_achievement_notification(kind, {"count": 4, "amount": 30})
        assert schedule.type == type_
        assert schedule.timing == NotificationTiming.IMMEDIATE
        assert schedule.scheduled_for == NOW + timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_completion_links_task(self, engine: NotificationEngine) -> None:
        data = AchievementData(task_name="Clean gutters", task_id="task-1")
        schedule = await engine.scheduler.schedule_achievement_notification(AchievementKind.COMPLETION, data)
        assert schedule.related_task_id == "task-1"
        assert schedule.content.body == 'Task completed "Clean gutters" finished'

    @pytest.mark.asyncio
    async def test_deferred_past_quiet_hours(self, engine: NotificationEngine, clock: FakeClock) -> None:
        clock.now = datetime(2026, 3, 4, 22, 30, tzinfo=UTC)
        schedule = await engine.scheduler.schedule_achievement_notification(AchievementKind.STREAK, {"count": 5})
        assert schedule.scheduled_for == datetime(2026, 3, 5, 8, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_disabled_achievements_raise(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"achievements": False}})
        with pytest.raises(DisabledError):
            await engine.scheduler.schedule_achievement_notification(AchievementKind.STREAK)


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_seasonal_off_by_default(self, engine: NotificationEngine) -> None:
        with pytest.raises(DisabledError) as exc_info:
            await engine.scheduler.schedule_seasonal_suggestions()
        assert exc_info.value.category == "suggestions"

    @pytest.mark.asyncio
    async def test_seasonal_digest_on_saturday_morning(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"suggestions": True}})
        schedule = await engine.scheduler.schedule_seasonal_suggestions()

        assert schedule is not None
        assert schedule.scheduled_for == datetime(2026, 3, 7, 9, 0, tzinfo=UTC)
        assert schedule.priority == NotificationPriority.LOW
        assert schedule.timing == NotificationTiming.BATCH
        assert schedule.content.title == "🌸 Spring Maintenance"

    @pytest.mark.asyncio
    async def test_seasonal_uses_learned_hour(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"suggestions": True}})
        engine.engagement.track_sent("n1", NotificationType.TASK_REMINDER)
        engine.engagement.track_opened("n1", 30)

        schedule = await engine.scheduler.schedule_seasonal_suggestions(season="fall")
        assert schedule is not None
        assert schedule.scheduled_for == datetime(2026, 3, 7, 10, 0, tzinfo=UTC)
        assert schedule.content.title == "🍂 Fall Maintenance"

    @pytest.mark.asyncio
    async def test_weather_opportunity(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"suggestions": True}})
        tasks = [make_task(), make_task(id="inside", category="Plumbing", title="Fix sink")]
        schedule = await engine.scheduler.schedule_weather_opportunity(
            tasks, WeatherInfo(condition="Sunny", temperature=68)
        )
        assert schedule is not None
        assert schedule.type == NotificationType.WEATHER_OPPORTUNITY
        assert schedule.scheduled_for == NOW + timedelta(seconds=2)
        assert schedule.content.title == "🌤️ Perfect Weather for clean gutters"

    @pytest.mark.asyncio
    async def test_weather_before_eight_waits_for_morning(self, engine: NotificationEngine, clock: FakeClock) -> None:
        engine.preferences.update({"frequency": {"suggestions": True}})
        clock.now = datetime(2026, 3, 4, 6, 0, tzinfo=UTC)
        schedule = await engine.scheduler.schedule_weather_opportunity(
            [make_task()], WeatherInfo(condition="Clear", temperature=60)
        )
        assert schedule is not None
        assert schedule.scheduled_for == datetime(2026, 3, 4, 8, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_bad_weather_skipped(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"suggestions": True}})
        result = await engine.scheduler.schedule_weather_opportunity(
            [make_task()], WeatherInfo(condition="Rain", temperature=50)
        )
        assert result is None


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_for_task(self, engine: NotificationEngine) -> None:
        engine.preferences.update({"frequency": {"weekly_limit": 10}})
        await engine.scheduler.schedule_task_notifications([make_task(), make_task(id="task-2")])
        orphan_content = NotificationContent(title="Orphan", body="")
        await engine.platform.schedule_at("orphan", orphan_content, NOW + timedelta(days=1), {"task_id": "task-1"})

        removed = await engine.scheduler.cancel_for_task("task-1")

        assert removed == 2
        remaining = engine.scheduler.get_scheduled_notifications()
        assert {s.related_task_id for s in remaining} == {"task-2"}
        assert await pending_ids(engine) == {s.id for s in remaining}

    @pytest.mark.asyncio
    async def test_cancel_for_equipment(self, engine: NotificationEngine) -> None:
        await engine.scheduler.schedule_equipment_alert(make_equipment(), EquipmentAlertKind.SERVICE_DUE)
        assert await engine.scheduler.cancel_for_equipment("eq-1") == 1
        assert engine.scheduler.get_scheduled_notifications() == []
        assert await pending_ids(engine) == set()

    @pytest.mark.asyncio
    async def test_cancel_notification(self, engine: NotificationEngine) -> None:
        schedule = await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert schedule is not None
        assert await engine.scheduler.cancel_notification(schedule.id) is True
        assert engine.scheduler.get_schedule(schedule.id) is None
        assert await engine.scheduler.cancel_notification(schedule.id) is False

    @pytest.mark.asyncio
    async def test_cancel_all(self, engine: NotificationEngine) -> None:
        await engine.scheduler.schedule_task_notifications([make_task()])
        await engine.scheduler.cancel_all()
        assert engine.scheduler.get_scheduled_notifications() == []
        assert await pending_ids(engine) == set()


class TestPlatformResponses:
    @pytest.mark.asyncio
    async def test_deliver_then_open(self, engine: NotificationEngine, clock: FakeClock) -> None:
        schedule = await engine.scheduler.schedule_equipment_alert(
            make_equipment(needs_attention=True), EquipmentAlertKind.ATTENTION_NEEDED
        )
        assert schedule is not None

        await engine.platform.deliver(schedule.id)
        assert engine.scheduler.get_schedule(schedule.id).status == ScheduleStatus.DELIVERED
        [record] = engine.engagement.get_analytics()
        assert record.notification_id == schedule.id

        clock.advance(seconds=30)
        await engine.platform.respond(schedule.id, PlatformOutcome.OPENED)

        assert engine.scheduler.get_schedule(schedule.id).status == ScheduleStatus.OPENED
        [record] = engine.engagement.get_analytics()
        assert record.opened_at == NOW + timedelta(seconds=30)
        assert record.engagement_score == 100

    @pytest.mark.asyncio
    async def test_late_delivery_scores_latency_from_send(self, engine: NotificationEngine, clock: FakeClock) -> None:
        data = AchievementData(task_name="Clean gutters", task_id="task-1")
        schedule = await engine.scheduler.schedule_achievement_notification(AchievementKind.COMPLETION, data)

        clock.advance(hours=1)
        await engine.platform.deliver(schedule.id)
        clock.advance(seconds=30)
        await engine.platform.respond(schedule.id, PlatformOutcome.OPENED)

        [record] = engine.engagement.get_analytics()
        assert record.sent_at == NOW + timedelta(hours=1)
        assert record.opened_at == NOW + timedelta(hours=1, seconds=30)
        # base 50, opened within a minute +30, achievement +15
        assert record.engagement_score == 95

    @pytest.mark.asyncio
    async def test_second_resolution_ignored(self, engine: NotificationEngine) -> None:
        schedule = await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert schedule is not None
        await engine.platform.deliver(schedule.id)
        await engine.platform.respond(schedule.id, PlatformOutcome.DISMISSED)
        await engine.platform.respond(schedule.id, PlatformOutcome.OPENED)

        stored = engine.scheduler.get_schedule(schedule.id)
        assert stored.dismissed is True
        assert stored.opened is False
        [record] = engine.engagement.get_analytics()
        assert record.opened_at is None

    @pytest.mark.asyncio
    async def test_open_without_delivery_records_send(self, engine: NotificationEngine) -> None:
        schedule = await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert schedule is not None
        await engine.platform.respond(schedule.id, PlatformOutcome.OPENED)

        stored = engine.scheduler.get_schedule(schedule.id)
        assert stored.delivered is True
        assert stored.opened is True
        [record] = engine.engagement.get_analytics()
        assert record.opened_at is not None

    @pytest.mark.asyncio
    async def test_action_recorded(self, engine: NotificationEngine) -> None:
        schedule = await engine.scheduler.schedule_task_reminder(make_task(), ReminderKind.DUE)
        assert schedule is not None
        await engine.platform.deliver(schedule.id)
        await engine.platform.respond(schedule.id, PlatformOutcome.ACTION, action="mark_done")

        [record] = engine.engagement.get_analytics()
        assert record.action_taken == "mark_done"
        assert record.engagement_score == 30

    @pytest.mark.asyncio
    async def test_unknown_request_ignored(self, engine: NotificationEngine) -> None:
        await engine.scheduler.handle_platform_response("nope", PlatformOutcome.OPENED)
        assert engine.engagement.get_analytics() == []
