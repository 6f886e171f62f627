"""Engagement tracking, scoring and reporting.

Tracking is best-effort: every track_* call logs and returns on failure and
never raises into the delivery path.
"""

from __future__ import annotations

import random
from collections import Counter, defaultdict
from datetime import datetime, timedelta

import structlog

from homekeeper.config import Settings
from homekeeper.core.clock import Clock, system_clock
from homekeeper.core.week_utils import get_week_iso, weeks_between
from homekeeper.notifications.rules import day_name
from homekeeper.notifications.schemas import (
    AnalyticsReport,
    EngagementSummary,
    NotificationAnalytics,
    NotificationType,
    TimingRecommendation,
    TypeCounts,
    UserEngagementProfile,
    WeeklyTrend,
    WeekStats,
)
from homekeeper.storage.documents import StoredDocument, commit_together, remove_together

logger = structlog.get_logger()

BASE_OPEN_SCORE = 50
ACTION_BONUS = 30
DISMISS_PENALTY = 20

# (max response seconds, bonus), checked in order
LATENCY_BONUSES = ((60, 30), (300, 20), (900, 10))

TYPE_BONUSES = {
    NotificationType.TASK_REMINDER: 20,
    NotificationType.ACHIEVEMENT: 15,
    NotificationType.EQUIPMENT_ATTENTION: 25,
}
DEFAULT_TYPE_BONUS = 10

FALLBACK_TIMES = ["09:00", "18:00"]
FALLBACK_DAYS = ["monday", "wednesday", "saturday"]
FALLBACK_FREQUENCY = 3


def engagement_score(type_: NotificationType, response_time_seconds: float) -> int:
    """Score an open: base 50 plus latency and type bonuses, clamped to [0, 100]."""
    score = BASE_OPEN_SCORE
    for limit, bonus in LATENCY_BONUSES:
        if response_time_seconds < limit:
            score += bonus
            break
    score += TYPE_BONUSES.get(type_, DEFAULT_TYPE_BONUS)
    return min(100, max(0, score))


def _hour_label(hour: int) -> str:
    return f"{hour:02d}:00"


class EngagementTracker:
    """Records notification outcomes and derives the engagement profile."""

    def __init__(
        self,
        analytics: StoredDocument[list[NotificationAnalytics]],
        profile: StoredDocument[UserEngagementProfile],
        weekly_stats: StoredDocument[dict[str, WeekStats]],
        settings: Settings,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._analytics = analytics
        self._profile = profile
        self._weekly_stats = weekly_stats
        self._settings = settings
        self._clock = clock or system_clock(settings.timezone)
        self._rng = rng or random.Random()

    async def load(self) -> None:
        await self._analytics.load()
        await self._profile.load()
        await self._weekly_stats.load()

    # --- Tracking ---

    def track_sent(self, notification_id: str, type_: NotificationType, sent_at: datetime | None = None) -> None:
        try:
            sent_at = sent_at or self._clock()
            record = NotificationAnalytics(notification_id=notification_id, type=type_, sent_at=sent_at)
            records = [*self._analytics.value, record]
            overflow = len(records) - self._settings.analytics_max_records
            if overflow > 0:
                records = records[overflow:]
            stats = self._bump_weekly_stats(type_, "sent", sent_at)
            commit_together((self._analytics, records), (self._weekly_stats, stats))
            logger.info("notification_sent_tracked", notification_id=notification_id, type=type_.value)
        except Exception:
            logger.exception("track_sent_failed", notification_id=notification_id)

    def track_opened(
        self,
        notification_id: str,
        response_time_seconds: float | None = None,
        opened_at: datetime | None = None,
    ) -> None:
        """Score an open. Latency defaults to the time since the recorded send."""
        try:
            record = self._find(notification_id)
            if record is None:
                return
            opened_at = opened_at or self._clock()
            if response_time_seconds is None:
                response_time_seconds = max(0.0, (opened_at - record.sent_at).total_seconds())
            updated = record.model_copy(
                update={
                    "opened_at": opened_at,
                    "engagement_score": engagement_score(record.type, response_time_seconds),
                }
            )
            records = self._replace(updated)
            stats = self._bump_weekly_stats(record.type, "opened", opened_at)
            profile = self._updated_profile(records, opened_at)
            commit_together(
                (self._analytics, records),
                (self._weekly_stats, stats),
                (self._profile, profile),
            )
            logger.info(
                "notification_opened_tracked",
                notification_id=notification_id,
                type=record.type.value,
                score=updated.engagement_score,
            )
        except Exception:
            logger.exception("track_opened_failed", notification_id=notification_id)

    def track_dismissed(self, notification_id: str, dismissed_at: datetime | None = None) -> None:
        try:
            record = self._find(notification_id)
            if record is None:
                return
            updated = record.model_copy(
                update={
                    "dismissed_at": dismissed_at or self._clock(),
                    "engagement_score": max(0, record.engagement_score - DISMISS_PENALTY),
                }
            )
            self._analytics.set(self._replace(updated))
            logger.info("notification_dismissed_tracked", notification_id=notification_id, type=record.type.value)
        except Exception:
            logger.exception("track_dismissed_failed", notification_id=notification_id)

    def track_action(self, notification_id: str, action: str) -> None:
        """Record a user action. The bonus is added without re-clamping the score."""
        try:
            record = self._find(notification_id)
            if record is None:
                return
            updated = record.model_copy(
                update={"action_taken": action, "engagement_score": record.engagement_score + ACTION_BONUS}
            )
            self._analytics.set(self._replace(updated))
            logger.info("notification_action_tracked", notification_id=notification_id, action=action)
        except Exception:
            logger.exception("track_action_failed", notification_id=notification_id)

    # --- Reads ---

    def get_analytics(self) -> list[NotificationAnalytics]:
        return [record.model_copy() for record in self._analytics.value]

    def get_profile(self) -> UserEngagementProfile:
        return self._profile.value.model_copy()

    def get_weekly_stats(self) -> dict[str, WeekStats]:
        return {week: stats.model_copy(deep=True) for week, stats in self._weekly_stats.value.items()}

    def generate_report(self, period_days: int | None = None) -> AnalyticsReport:
        """Summarize the last `period_days` of notifications."""
        days = period_days if period_days is not None else self._settings.default_report_days
        end = self._clock()
        start = end - timedelta(days=days)
        period = [record for record in self._analytics.value if start <= record.sent_at <= end]
        opened = [record for record in period if record.opened_at is not None]

        total_sent = len(period)
        total_opened = len(opened)
        open_rate = round(total_opened / total_sent * 100, 2) if total_sent else 0.0

        by_type: dict[NotificationType, int] = {}
        for record in period:
            by_type[record.type] = by_type.get(record.type, 0) + 1

        return AnalyticsReport(
            period_days=days,
            total_sent=total_sent,
            total_opened=total_opened,
            open_rate=open_rate,
            by_type=by_type,
            weekly_trends=self._weekly_trends(start, end),
            engagement=self._engagement_summary(opened),
        )

    def recommend_timing(self) -> TimingRecommendation:
        """Best open hours, best open days and a weekly frequency from history."""
        records = self._analytics.value
        opened = [record for record in records if record.opened_at is not None]
        if not opened:
            return TimingRecommendation(
                recommended_times=list(FALLBACK_TIMES),
                recommended_days=list(FALLBACK_DAYS),
                recommended_frequency=FALLBACK_FREQUENCY,
            )

        response_rate = len(opened) / len(records)
        frequency = round(response_rate * self._settings.weekly_limit_ceiling)
        frequency = max(self._settings.weekly_limit_floor, min(self._settings.weekly_limit_ceiling, frequency))
        return TimingRecommendation(
            recommended_times=self._top_hours(opened),
            recommended_days=self._top_days(opened),
            recommended_frequency=frequency,
        )

    def clear(self) -> None:
        """Drop analytics, profile and weekly stats in one multi-key removal."""
        remove_together(self._analytics, self._profile, self._weekly_stats)
        logger.info("analytics_cleared")

    # --- Internals ---

    def _find(self, notification_id: str) -> NotificationAnalytics | None:
        for record in self._analytics.value:
            if record.notification_id == notification_id:
                return record
        logger.warning("analytics_not_found", notification_id=notification_id)
        return None

    def _replace(self, updated: NotificationAnalytics) -> list[NotificationAnalytics]:
        return [
            updated if record.notification_id == updated.notification_id else record
            for record in self._analytics.value
        ]

    def _local(self, when: datetime) -> datetime:
        return when.astimezone(self._clock().tzinfo)

    def _bump_weekly_stats(self, type_: NotificationType, field: str, when: datetime) -> dict[str, WeekStats]:
        stats = self.get_weekly_stats()
        week = get_week_iso(self._local(when))
        entry = stats.setdefault(week, WeekStats())
        counts = entry.by_type.setdefault(type_, TypeCounts())
        setattr(entry, field, getattr(entry, field) + 1)
        setattr(counts, field, getattr(counts, field) + 1)
        return stats

    def _updated_profile(self, records: list[NotificationAnalytics], opened_at: datetime) -> UserEngagementProfile:
        profile = self._profile.value.model_copy()
        opened = [record for record in records if record.opened_at is not None]
        local_open = self._local(opened_at)

        profile.response_rate = len(opened) / len(records) if records else 0.0
        if opened:
            minutes = [(record.opened_at - record.sent_at).total_seconds() / 60 for record in opened]  # type: ignore[operator]
            profile.average_response_time = sum(minutes) / len(minutes)
        profile.last_active_hour = local_open.hour
        profile.preferred_days = self._top_days(opened)
        if profile.optimal_delivery_time is None or self._rng.random() < self._settings.exploration_rate:
            profile.optimal_delivery_time = _hour_label(local_open.hour)
        profile.updated_at = self._clock()
        return profile

    def _top_hours(self, opened: list[NotificationAnalytics], limit: int = 3) -> list[str]:
        hours = Counter(self._local(record.opened_at).hour for record in opened if record.opened_at)
        return [_hour_label(hour) for hour, _ in hours.most_common(limit)]

    def _top_days(self, opened: list[NotificationAnalytics], limit: int = 3) -> list[str]:
        days = Counter(day_name(self._local(record.opened_at)) for record in opened if record.opened_at)
        return [day for day, _ in days.most_common(limit)]

    def _weekly_trends(self, start: datetime, end: datetime) -> list[WeeklyTrend]:
        stats = self._weekly_stats.value
        trends = []
        for week in weeks_between(self._local(start), self._local(end)):
            entry = stats.get(week, WeekStats())
            rate = round(entry.opened / entry.sent * 100, 2) if entry.sent else 0.0
            trends.append(WeeklyTrend(week=week, sent=entry.sent, opened=entry.opened, open_rate=rate))
        return trends

    def _engagement_summary(self, opened: list[NotificationAnalytics]) -> EngagementSummary:
        if not opened:
            return EngagementSummary()

        minutes = [(record.opened_at - record.sent_at).total_seconds() / 60 for record in opened]  # type: ignore[operator]
        scores: dict[NotificationType, list[int]] = defaultdict(list)
        for record in opened:
            scores[record.type].append(record.engagement_score)
        ranked = sorted(scores, key=lambda type_: sum(scores[type_]) / len(scores[type_]), reverse=True)

        return EngagementSummary(
            average_response_time=round(sum(minutes) / len(minutes)),
            preferred_times=self._top_hours(opened),
            most_engaging_types=ranked[:3],
        )
