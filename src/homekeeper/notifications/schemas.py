"""Notification records, preferences and engagement models.

Everything here is persisted as JSON through StoredDocument, so field names
double as the on-disk layout.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from homekeeper.models import Equipment, Home, Task, Timestamp, utcnow

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class NotificationType(str, Enum):
    """All notification variants the engine can schedule."""

    TASK_REMINDER = "task_reminder"
    EQUIPMENT_SERVICE = "equipment_service"
    EQUIPMENT_ATTENTION = "equipment_attention"
    ACHIEVEMENT = "achievement"
    MONEY_SAVED = "money_saved"
    STREAK = "streak"
    SEASONAL_SUGGESTION = "seasonal_suggestion"
    WEATHER_OPPORTUNITY = "weather_opportunity"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationTiming(str, Enum):
    IMMEDIATE = "immediate"
    OPTIMAL = "optimal"
    BATCH = "batch"
    SCHEDULED = "scheduled"


class ReminderKind(str, Enum):
    """Task reminder variants, in evaluation order."""

    ADVANCE = "advance"
    DUE = "due"
    OVERDUE = "overdue"


class EquipmentAlertKind(str, Enum):
    SERVICE_DUE = "service_due"
    ATTENTION_NEEDED = "attention_needed"


class AchievementKind(str, Enum):
    MONEY_SAVED = "money_saved"
    STREAK = "streak"
    COMPLETION = "completion"
    MILESTONE = "milestone"


class NotificationStyle(str, Enum):
    GENTLE = "gentle"
    STANDARD = "standard"
    PERSISTENT = "persistent"


class DeliveryTiming(str, Enum):
    IMMEDIATE = "immediate"
    BATCHED = "batched"
    SMART = "smart"


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    OPENED = "opened"
    DISMISSED = "dismissed"


# --- Preferences ---


class QuietHours(BaseModel):
    start: str = "21:00"
    end: str = "08:00"

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not HHMM_PATTERN.match(value):
            msg = f"Expected HH:MM, got {value!r}"
            raise ValueError(msg)
        return value


class FrequencySettings(BaseModel):
    task_reminders: bool = True
    equipment_alerts: bool = True
    achievements: bool = True
    suggestions: bool = False
    weekly_limit: int = Field(default=3, ge=0)


class NotificationPreferences(BaseModel):
    enabled: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    frequency: FrequencySettings = Field(default_factory=FrequencySettings)
    style: NotificationStyle = NotificationStyle.STANDARD
    delivery_timing: DeliveryTiming = DeliveryTiming.SMART


# --- Schedules ---


class NotificationContent(BaseModel):
    title: str
    body: str
    emoji: str = ""
    priority: NotificationPriority = NotificationPriority.NORMAL
    action_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationSchedule(BaseModel):
    id: str
    type: NotificationType
    priority: NotificationPriority = NotificationPriority.NORMAL
    timing: NotificationTiming = NotificationTiming.SCHEDULED
    scheduled_for: Timestamp
    content: NotificationContent
    related_task_id: str | None = None
    related_equipment_id: str | None = None
    delivered: bool = False
    opened: bool = False
    dismissed: bool = False
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    @property
    def status(self) -> ScheduleStatus:
        if self.opened:
            return ScheduleStatus.OPENED
        if self.dismissed:
            return ScheduleStatus.DISMISSED
        if self.delivered:
            return ScheduleStatus.DELIVERED
        return ScheduleStatus.PENDING

    @property
    def resolved(self) -> bool:
        return self.opened or self.dismissed


class WeeklyCount(BaseModel):
    week: str
    count: int = 0


# --- Engagement ---


class NotificationAnalytics(BaseModel):
    notification_id: str
    type: NotificationType
    sent_at: Timestamp
    opened_at: Timestamp | None = None
    dismissed_at: Timestamp | None = None
    action_taken: str | None = None
    engagement_score: int = 0


class UserEngagementProfile(BaseModel):
    optimal_delivery_time: str | None = None
    preferred_days: list[str] = Field(default_factory=list)
    response_rate: float = 0.0
    average_response_time: float = 0.0
    last_active_hour: int = 0
    frequency_tolerance: int = 3
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class TypeCounts(BaseModel):
    sent: int = 0
    opened: int = 0


class WeekStats(BaseModel):
    sent: int = 0
    opened: int = 0
    by_type: dict[NotificationType, TypeCounts] = Field(default_factory=dict)


class WeeklyTrend(BaseModel):
    week: str
    sent: int
    opened: int
    open_rate: float


class EngagementSummary(BaseModel):
    average_response_time: float = 0.0
    preferred_times: list[str] = Field(default_factory=list)
    most_engaging_types: list[NotificationType] = Field(default_factory=list)


class AnalyticsReport(BaseModel):
    period_days: int
    total_sent: int = 0
    total_opened: int = 0
    open_rate: float = 0.0
    by_type: dict[NotificationType, int] = Field(default_factory=dict)
    weekly_trends: list[WeeklyTrend] = Field(default_factory=list)
    engagement: EngagementSummary = Field(default_factory=EngagementSummary)


class TimingRecommendation(BaseModel):
    recommended_times: list[str]
    recommended_days: list[str]
    recommended_frequency: int


# --- Content context ---


class WeatherInfo(BaseModel):
    condition: str
    temperature: float
    is_good_for_outdoor_work: bool = False


class NotificationContext(BaseModel):
    time_of_day: str  # morning | afternoon | evening | night
    day_of_week: str
    season: str  # spring | summer | fall | winter
    weather: WeatherInfo | None = None
    user_activity: str = "active"


class TaskReminderData(BaseModel):
    task: Task
    reminder_type: ReminderKind = ReminderKind.DUE


class EquipmentData(BaseModel):
    equipment: Equipment
    service_type: str = "routine"  # routine | overdue | attention


class AchievementData(BaseModel):
    kind: AchievementKind = AchievementKind.COMPLETION
    amount: float = 0
    period: str = "this month"
    count: int = 0
    task_name: str = ""
    task_id: str | None = None
    description: str = ""


class SeasonalData(BaseModel):
    suggestions: list[str]
    season: str
    home: Home | None = None


class WeatherData(BaseModel):
    outdoor_tasks: list[Task]
    weather: WeatherInfo
