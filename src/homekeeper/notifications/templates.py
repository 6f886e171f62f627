"""Typed notification templates.

Placeholders use ``{name}`` syntax and must name a TemplateVar. A template
with an unknown placeholder fails at construction rather than rendering a
stray brace pair at delivery time.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from homekeeper.notifications.schemas import NotificationPriority, NotificationType

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class TemplateVar(str, Enum):
    """Closed set of variables the content generator knows how to compute."""

    # Task reminders
    EMOJI = "emoji"
    TIME_FRAME = "time_frame"
    TASK_NAME = "task_name"
    DESCRIPTION = "description"
    DURATION = "duration"
    SAVINGS = "savings"
    MOTIVATIONAL_PHRASE = "motivational_phrase"
    TIME_ESTIMATE = "time_estimate"
    SEASONAL_CONTEXT = "seasonal_context"
    ACTION = "action"
    # Equipment
    EQUIPMENT_NAME = "equipment_name"
    EQUIPMENT_TYPE = "equipment_type"
    LAST_SERVICE_DATE = "last_service_date"
    SERVICE_TYPE = "service_type"
    BENEFITS = "benefits"
    ISSUE_DESCRIPTION = "issue_description"
    # Achievements
    ACHIEVEMENT_TYPE = "achievement_type"
    CELEBRATION_MESSAGE = "celebration_message"
    STATISTIC = "statistic"
    AMOUNT = "amount"
    STREAK_COUNT = "streak_count"
    MOTIVATIONAL_MESSAGE = "motivational_message"
    # Seasonal
    SEASON_EMOJI = "season_emoji"
    SEASON = "season"
    SUGGESTIONS = "suggestions"
    NEXT_SEASON = "next_season"
    ACTION_ITEMS = "action_items"
    # Weather
    ACTIVITY = "activity"
    WEATHER_DESCRIPTION = "weather_description"
    OUTDOOR_TASKS = "outdoor_tasks"
    TEMPERATURE = "temperature"
    CONDITION = "condition"
    TASK_COUNT = "task_count"


def placeholders(text: str) -> list[str]:
    return PLACEHOLDER_PATTERN.findall(text)


@dataclass(frozen=True)
class NotificationTemplate:
    type: NotificationType
    title_template: str
    body_template: str
    emoji: str
    priority: NotificationPriority = NotificationPriority.NORMAL

    def __post_init__(self) -> None:
        for name in placeholders(self.title_template) + placeholders(self.body_template):
            try:
                TemplateVar(name)
            except ValueError:
                msg = f"Unknown template variable {{{name}}} in {self.type.value} template"
                raise ValueError(msg) from None

    @property
    def variables(self) -> frozenset[TemplateVar]:
        names = placeholders(self.title_template) + placeholders(self.body_template)
        return frozenset(TemplateVar(name) for name in names)

    def render(self, values: Mapping[TemplateVar, object]) -> tuple[str, str]:
        """Substitute placeholders. Variables without a value render empty."""

        def substitute(match: re.Match[str]) -> str:
            value = values.get(TemplateVar(match.group(1)))
            return "" if value is None else str(value)

        title = PLACEHOLDER_PATTERN.sub(substitute, self.title_template)
        body = PLACEHOLDER_PATTERN.sub(substitute, self.body_template)
        return title.strip(), body.strip()


DEFAULT_TEMPLATE = NotificationTemplate(
    type=NotificationType.TASK_REMINDER,
    title_template="🏠 HomeKeeper Reminder",
    body_template="You have a pending task to review.",
    emoji="🏠",
)


def default_templates() -> dict[NotificationType, list[NotificationTemplate]]:
    """Built-in template variants, first variant being the most energetic one."""
    T = NotificationType
    P = NotificationPriority
    return {
        T.TASK_REMINDER: [
            NotificationTemplate(
                T.TASK_REMINDER,
                "{emoji} {time_frame}: {task_name}",
                "{description} ({duration}, Save ${savings})",
                "🏠",
                P.HIGH,
            ),
            NotificationTemplate(
                T.TASK_REMINDER,
                "{emoji} Task Ready: {task_name}",
                "{motivational_phrase} {time_estimate}",
                "⚡",
            ),
            NotificationTemplate(
                T.TASK_REMINDER,
                "{emoji} {task_name}",
                "{seasonal_context} Perfect time to {action}!",
                "🔧",
            ),
        ],
        T.EQUIPMENT_SERVICE: [
            NotificationTemplate(
                T.EQUIPMENT_SERVICE,
                "🔧 {equipment_name} Service Due",
                "Keep your {equipment_type} running efficiently. Last service: {last_service_date}",
                "🔧",
                P.HIGH,
            ),
            NotificationTemplate(
                T.EQUIPMENT_SERVICE,
                "⚙️ {equipment_name} Maintenance",
                "Scheduled {service_type} due {time_frame}. {benefits}",
                "⚙️",
            ),
        ],
        T.EQUIPMENT_ATTENTION: [
            NotificationTemplate(
                T.EQUIPMENT_ATTENTION,
                "⚠️ {equipment_name} Needs Attention",
                "{issue_description} Quick action can prevent bigger problems.",
                "⚠️",
                P.HIGH,
            ),
        ],
        T.ACHIEVEMENT: [
            NotificationTemplate(
                T.ACHIEVEMENT,
                "🎉 {achievement_type}!",
                "{celebration_message} {statistic}",
                "🎉",
            ),
        ],
        T.MONEY_SAVED: [
            NotificationTemplate(
                T.MONEY_SAVED,
                "💰 Money Saved!",
                "You've saved ${amount} {time_frame} with DIY maintenance!",
                "💰",
            ),
        ],
        T.STREAK: [
            NotificationTemplate(
                T.STREAK,
                "🔥 {streak_count} Task Streak!",
                "{motivational_message} Keep up the momentum!",
                "🔥",
            ),
        ],
        T.SEASONAL_SUGGESTION: [
            NotificationTemplate(
                T.SEASONAL_SUGGESTION,
                "{season_emoji} {season} Maintenance",
                "Perfect time for {suggestions}. Your home will thank you!",
                "🍂",
                P.LOW,
            ),
            NotificationTemplate(
                T.SEASONAL_SUGGESTION,
                "{emoji} {season} Prep Checklist",
                "Get ready for {next_season}: {action_items}",
                "📋",
                P.LOW,
            ),
        ],
        T.WEATHER_OPPORTUNITY: [
            NotificationTemplate(
                T.WEATHER_OPPORTUNITY,
                "🌤️ Perfect Weather for {activity}",
                "{weather_description} Ideal for: {outdoor_tasks}",
                "🌤️",
            ),
            NotificationTemplate(
                T.WEATHER_OPPORTUNITY,
                "☀️ Great Day for Outdoor Tasks",
                "{temperature}°F and {condition}. Time to tackle {task_count} outdoor tasks!",
                "☀️",
                P.LOW,
            ),
        ],
    }
