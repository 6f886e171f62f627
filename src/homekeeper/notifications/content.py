"""Notification content generation.

Builds a variable map from the payload for each notification type, picks a
template variant for the user's style and context, and renders it.
"""

from __future__ import annotations

import math
import random
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog

from homekeeper.core.clock import Clock, system_clock
from homekeeper.models import Equipment, Task
from homekeeper.notifications.schemas import (
    AchievementData,
    AchievementKind,
    EquipmentData,
    NotificationContent,
    NotificationContext,
    NotificationStyle,
    NotificationType,
    ReminderKind,
    SeasonalData,
    TaskReminderData,
    WeatherData,
)
from homekeeper.notifications.templates import DEFAULT_TEMPLATE, NotificationTemplate, TemplateVar, default_templates

logger = structlog.get_logger()

TIME_FRAMES = {
    ReminderKind.ADVANCE: "This Weekend",
    ReminderKind.DUE: "Due Tomorrow",
    ReminderKind.OVERDUE: "Due Today",
}

MOTIVATIONAL_PHRASES = [
    "Ready to tackle this?",
    "Let's get this done!",
    "Your home is counting on you!",
    "Perfect timing for this task",
    "Small effort, big impact",
]

SEASONAL_CONTEXTS = {
    "spring": "Spring is the perfect time to",
    "summer": "Take advantage of the warm weather to",
    "fall": "Get ready for winter by",
    "winter": "Stay cozy and productive by",
}

SERVICE_TYPES = {
    "routine": "routine maintenance",
    "overdue": "overdue service",
    "attention": "immediate attention",
}

EQUIPMENT_BENEFITS = {
    "HVAC": "Lower energy bills and better air quality",
    "Plumbing": "Prevent costly leaks and water damage",
    "Electrical": "Safety and efficiency improvements",
    "Appliance": "Extended lifespan and performance",
}

CELEBRATION_MESSAGES = {
    AchievementKind.MONEY_SAVED: "Fantastic savings",
    AchievementKind.STREAK: "You're on fire",
    AchievementKind.COMPLETION: "Task completed",
    AchievementKind.MILESTONE: "Milestone reached",
}

SEASON_EMOJIS = {"spring": "🌸", "summer": "☀️", "fall": "🍂", "winter": "❄️"}
NEXT_SEASONS = {"spring": "summer", "summer": "fall", "fall": "winter", "winter": "spring"}

# (category keywords, title keywords, emoji), first match wins
TASK_EMOJI_RULES: list[tuple[tuple[str, ...], tuple[str, ...], str]] = [
    (("hvac",), ("filter", "heating", "cooling"), "🌡️"),
    (("plumbing",), ("water", "pipe", "faucet"), "🚿"),
    (("electrical",), ("electric", "outlet", "switch"), "⚡"),
    (("exterior",), ("roof", "gutter", "siding"), "🏠"),
    (("safety",), ("smoke", "carbon", "detector"), "🛡️"),
    (("appliance",), ("washer", "dryer", "dishwasher"), "📱"),
    ((), ("clean", "wash"), "🧽"),
    ((), ("replace", "install"), "🔧"),
    ((), ("inspect", "check"), "🔍"),
    ((), ("outdoor", "garden", "lawn"), "🌿"),
]

LEADING_VERB = re.compile(r"^(check|clean|replace|inspect)\s+")

Variables = dict[TemplateVar, Any]


def format_number(value: float | int) -> str:
    """Render whole numbers without a trailing .0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_duration(minutes: int | None) -> str:
    if not minutes:
        return "Quick task"
    if minutes < 60:
        return f"{minutes} min"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"


def format_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def short_description(task: Task) -> str:
    if task.description and len(task.description) > 50:
        return task.description[:47] + "..."
    return task.description or "Maintenance task"


def task_emoji(task: Task) -> str:
    category = task.category.lower()
    title = task.title.lower()
    for category_words, title_words, emoji in TASK_EMOJI_RULES:
        if any(word in category for word in category_words) or any(word in title for word in title_words):
            return emoji
    return "🔧"


def motivational_message(streak_count: int) -> str:
    if streak_count >= 10:
        return "You're a maintenance superstar!"
    if streak_count >= 5:
        return "Amazing consistency!"
    if streak_count >= 3:
        return "Building great habits!"
    return "Keep up the great work!"


def service_time_frame(equipment: Equipment, now: datetime) -> str:
    if equipment.next_service_due is None:
        return "soon"
    days_until = math.ceil((equipment.next_service_due - now).total_seconds() / 86400)
    if days_until <= 0:
        return "now"
    if days_until <= 7:
        return "this week"
    if days_until <= 14:
        return "in 2 weeks"
    if days_until <= 30:
        return "this month"
    return "soon"


class ContentGenerator:
    """Renders notification content from typed templates."""

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Clock | None = None,
        templates: Mapping[NotificationType, list[NotificationTemplate]] | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock or system_clock()
        source = default_templates() if templates is None else templates
        self._templates: dict[NotificationType, list[NotificationTemplate]] = {
            type_: list(variants) for type_, variants in source.items()
        }

    def add_template(self, template: NotificationTemplate) -> None:
        """Register a custom variant for the template's notification type."""
        self._templates.setdefault(template.type, []).append(template)

    def templates_for(self, type_: NotificationType) -> list[NotificationTemplate]:
        return list(self._templates.get(type_, []))

    def generate(
        self,
        type_: NotificationType,
        data: Any,
        context: NotificationContext,
        style: NotificationStyle = NotificationStyle.STANDARD,
    ) -> NotificationContent:
        """Render content for a notification type.

        `data` is the payload model for the type (TaskReminderData,
        EquipmentData, AchievementData, SeasonalData or WeatherData); a plain
        mapping is validated into that model.
        """
        variables = self._build_variables(type_, data, context)
        if variables is None:
            logger.warning("content_type_unsupported", type=type_.value)
            return NotificationContent(title="🏠 HomeKeeper", body="You have a notification from HomeKeeper", emoji="🏠")

        template = self.select_template(type_, style, context)
        title, body = template.render(variables)
        return NotificationContent(
            title=title,
            body=body,
            emoji=template.emoji,
            priority=template.priority,
            metadata={var.value: value for var, value in variables.items()},
        )

    def select_template(
        self,
        type_: NotificationType,
        style: NotificationStyle,
        context: NotificationContext,
    ) -> NotificationTemplate:
        variants = self._templates.get(type_) or []
        if not variants:
            return DEFAULT_TEMPLATE
        if style == NotificationStyle.GENTLE and len(variants) > 1:
            return variants[min(1, len(variants) - 1)]
        if context.time_of_day == "morning":
            return variants[0]
        return self._rng.choice(variants)

    # --- Variable builders ---

    def _build_variables(self, type_: NotificationType, data: Any, context: NotificationContext) -> Variables | None:
        if type_ == NotificationType.TASK_REMINDER:
            return self.task_variables(TaskReminderData.model_validate(data), context)
        if type_ in (NotificationType.EQUIPMENT_SERVICE, NotificationType.EQUIPMENT_ATTENTION):
            return self.equipment_variables(EquipmentData.model_validate(data))
        if type_ in (NotificationType.ACHIEVEMENT, NotificationType.MONEY_SAVED, NotificationType.STREAK):
            return self.achievement_variables(AchievementData.model_validate(data))
        if type_ == NotificationType.SEASONAL_SUGGESTION:
            return self.seasonal_variables(SeasonalData.model_validate(data))
        if type_ == NotificationType.WEATHER_OPPORTUNITY:
            return self.weather_variables(WeatherData.model_validate(data))
        return None

    def task_variables(self, data: TaskReminderData, context: NotificationContext) -> Variables:
        task = data.task
        minutes = task.estimated_duration_minutes
        return {
            TemplateVar.EMOJI: task_emoji(task),
            TemplateVar.TIME_FRAME: TIME_FRAMES.get(data.reminder_type, "Task Ready"),
            TemplateVar.TASK_NAME: task.title,
            TemplateVar.DESCRIPTION: short_description(task),
            TemplateVar.DURATION: format_duration(minutes),
            TemplateVar.SAVINGS: format_number(task.money_saved_estimate or 0),
            TemplateVar.MOTIVATIONAL_PHRASE: self._rng.choice(MOTIVATIONAL_PHRASES),
            TemplateVar.TIME_ESTIMATE: f"({minutes} min)" if minutes else "",
            TemplateVar.SEASONAL_CONTEXT: SEASONAL_CONTEXTS.get(context.season, ""),
            TemplateVar.ACTION: LEADING_VERB.sub("", task.title.lower()),
        }

    def equipment_variables(self, data: EquipmentData) -> Variables:
        equipment = data.equipment
        last_service = equipment.last_service_date
        return {
            TemplateVar.EQUIPMENT_NAME: equipment.name,
            TemplateVar.EQUIPMENT_TYPE: equipment.type.lower(),
            TemplateVar.LAST_SERVICE_DATE: format_date(last_service) if last_service else "Unknown",
            TemplateVar.SERVICE_TYPE: SERVICE_TYPES.get(data.service_type, "service"),
            TemplateVar.TIME_FRAME: service_time_frame(equipment, self._clock()),
            TemplateVar.BENEFITS: EQUIPMENT_BENEFITS.get(equipment.category, "Optimal performance"),
            TemplateVar.ISSUE_DESCRIPTION: equipment.notes or "General maintenance needed",
        }

    def achievement_variables(self, data: AchievementData) -> Variables:
        amount = format_number(data.amount)
        statistics = {
            AchievementKind.MONEY_SAVED: f"${amount} saved {data.period}",
            AchievementKind.STREAK: f"{data.count} tasks in a row",
            AchievementKind.COMPLETION: f'"{data.task_name}" finished',
            AchievementKind.MILESTONE: f"{data.count} total tasks completed",
        }
        return {
            TemplateVar.ACHIEVEMENT_TYPE: data.kind.value.replace("_", " ", 1).upper(),
            TemplateVar.CELEBRATION_MESSAGE: CELEBRATION_MESSAGES.get(data.kind, "Great job"),
            TemplateVar.STATISTIC: statistics.get(data.kind) or data.description,
            TemplateVar.AMOUNT: amount,
            TemplateVar.TIME_FRAME: data.period or "this month",
            TemplateVar.STREAK_COUNT: data.count,
            TemplateVar.MOTIVATIONAL_MESSAGE: motivational_message(data.count),
        }

    def seasonal_variables(self, data: SeasonalData) -> Variables:
        season = data.season
        return {
            TemplateVar.SEASON_EMOJI: SEASON_EMOJIS.get(season, "🏠"),
            TemplateVar.SEASON: season[:1].upper() + season[1:],
            TemplateVar.SUGGESTIONS: " and ".join(data.suggestions[:2]),
            TemplateVar.NEXT_SEASON: NEXT_SEASONS.get(season, "next season"),
            TemplateVar.ACTION_ITEMS: ", ".join(data.suggestions[:3]),
            TemplateVar.EMOJI: SEASON_EMOJIS.get(season, "📋"),
        }

    def weather_variables(self, data: WeatherData) -> Variables:
        tasks, weather = data.outdoor_tasks, data.weather
        temperature = format_number(weather.temperature)
        condition = weather.condition.lower()
        return {
            TemplateVar.ACTIVITY: tasks[0].title.lower() if tasks else "outdoor maintenance",
            TemplateVar.WEATHER_DESCRIPTION: f"{temperature}°F and {condition}.",
            TemplateVar.OUTDOOR_TASKS: " and ".join(task.title for task in tasks[:2]),
            TemplateVar.TEMPERATURE: temperature,
            TemplateVar.CONDITION: condition,
            TemplateVar.TASK_COUNT: len(tasks),
        }
