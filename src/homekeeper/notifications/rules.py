"""Timing and gating rules shared by the scheduler and content generator.

Pure functions only: every function takes the instant it reasons about and
never reads the clock itself.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from homekeeper.core.errors import DisabledError
from homekeeper.models import Task
from homekeeper.notifications.schemas import (
    NotificationContext,
    NotificationPreferences,
    NotificationPriority,
    NotificationStyle,
    NotificationType,
    QuietHours,
    ReminderKind,
    WeatherInfo,
)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SATURDAY = 5
SUNDAY = 6

REMINDER_OFFSETS: dict[ReminderKind, timedelta] = {
    ReminderKind.ADVANCE: timedelta(days=3),
    ReminderKind.DUE: timedelta(days=1),
    ReminderKind.OVERDUE: timedelta(0),
}

STYLE_REMINDERS: dict[NotificationStyle, tuple[ReminderKind, ...]] = {
    NotificationStyle.GENTLE: (ReminderKind.DUE,),
    NotificationStyle.STANDARD: (ReminderKind.ADVANCE, ReminderKind.DUE),
    NotificationStyle.PERSISTENT: (ReminderKind.ADVANCE, ReminderKind.DUE, ReminderKind.OVERDUE),
}

EQUIPMENT_SERVICE_LEAD = timedelta(days=7)

# Preference flag gating each notification type
CATEGORY_FOR_TYPE: dict[NotificationType, str] = {
    NotificationType.TASK_REMINDER: "task_reminders",
    NotificationType.EQUIPMENT_SERVICE: "equipment_alerts",
    NotificationType.EQUIPMENT_ATTENTION: "equipment_alerts",
    NotificationType.ACHIEVEMENT: "achievements",
    NotificationType.MONEY_SAVED: "achievements",
    NotificationType.STREAK: "achievements",
    NotificationType.SEASONAL_SUGGESTION: "suggestions",
    NotificationType.WEATHER_OPPORTUNITY: "suggestions",
}

SEASONAL_SUGGESTIONS: dict[str, list[str]] = {
    "spring": [
        "Spring HVAC maintenance - clean filters and ducts",
        "Inspect roof for winter damage",
        "Clean gutters and downspouts",
        "Service lawn mower and outdoor equipment",
    ],
    "summer": [
        "Check air conditioning efficiency",
        "Inspect and clean deck/patio",
        "Trim trees and bushes near house",
        "Check irrigation system",
    ],
    "fall": [
        "Winterize sprinkler system",
        "Clean and store outdoor furniture",
        "Check heating system before cold weather",
        "Clean fireplace and chimney",
    ],
    "winter": [
        "Check for ice dams and icicles",
        "Test smoke and carbon monoxide detectors",
        "Indoor maintenance projects",
        "Plan for spring maintenance",
    ],
}

GOOD_WEATHER_CONDITIONS = ("clear", "sunny", "partly cloudy", "overcast")


# --- Gating ---


def category_enabled(preferences: NotificationPreferences, type_: NotificationType) -> bool:
    flag = CATEGORY_FOR_TYPE.get(type_)
    if flag is None:
        return True
    return bool(getattr(preferences.frequency, flag))


def ensure_enabled(preferences: NotificationPreferences, type_: NotificationType) -> None:
    """Raise DisabledError unless notifications and the type's category are on."""
    if not preferences.enabled:
        raise DisabledError()
    if not category_enabled(preferences, type_):
        raise DisabledError(CATEGORY_FOR_TYPE[type_])


def task_priority(task: Task) -> NotificationPriority:
    if not task.priority:
        return NotificationPriority.LOW
    if task.priority >= 4:
        return NotificationPriority.HIGH
    if task.priority >= 3:
        return NotificationPriority.NORMAL
    return NotificationPriority.LOW


# --- Quiet hours ---


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(when: datetime, quiet: QuietHours) -> bool:
    """Whether the wall-clock time of `when` falls in [start, end).

    A window whose start is later than its end wraps past midnight. A window
    with equal start and end is empty.
    """
    start, end = parse_hhmm(quiet.start), parse_hhmm(quiet.end)
    current = when.time().replace(second=0, microsecond=0)
    if start > end:
        return current >= start or current < end
    return start <= current < end


def defer_for_quiet_hours(when: datetime, quiet: QuietHours) -> datetime:
    """Move `when` to the end of the quiet window if it falls inside it."""
    if not in_quiet_hours(when, quiet):
        return when

    start, end = parse_hhmm(quiet.start), parse_hhmm(quiet.end)
    deferred = when.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if start > end and when.time() >= start:
        deferred += timedelta(days=1)
    return deferred


# --- Reminder timing ---


def reminder_times(due: datetime, style: NotificationStyle) -> list[tuple[ReminderKind, datetime]]:
    """Reminder kinds for a style with their raw fire times, in fixed order."""
    return [(kind, due - REMINDER_OFFSETS[kind]) for kind in STYLE_REMINDERS[style]]


def next_weekday_at(now: datetime, weekday: int, hour: int, minute: int = 0) -> datetime:
    """Next occurrence of weekday at hour:minute strictly after now (Monday == 0)."""
    days_ahead = (weekday - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def at_hour_after(base: datetime, hhmm: str, now: datetime) -> datetime:
    """`base` moved to the HH:MM wall-clock time, pushed a day forward if not after now."""
    slot = parse_hhmm(hhmm)
    moved = base.replace(hour=slot.hour, minute=slot.minute, second=0, microsecond=0)
    if moved <= now:
        moved += timedelta(days=1)
    return moved


# --- Context ---


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def season_for(month: int) -> str:
    """Northern-hemisphere season for a calendar month (January == 1)."""
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def day_name(when: datetime) -> str:
    return DAY_NAMES[when.weekday()]


def build_context(now: datetime, weather: WeatherInfo | None = None) -> NotificationContext:
    return NotificationContext(
        time_of_day=time_of_day(now.hour),
        day_of_week=day_name(now),
        season=season_for(now.month),
        weather=weather,
    )


# --- Suggestions and weather ---


def seasonal_suggestions(season: str, limit: int = 2) -> list[str]:
    return SEASONAL_SUGGESTIONS.get(season, [])[:limit]


def is_good_weather(condition: str) -> bool:
    lowered = condition.lower()
    return any(good in lowered for good in GOOD_WEATHER_CONDITIONS)


def is_outdoor_task(task: Task) -> bool:
    return bool(task.weather_dependent) or "exterior" in task.category.lower() or "outdoor" in task.title.lower()
