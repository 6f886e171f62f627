"""Weekly frequency optimizer.

Adjusts the weekly notification limit from the observed response rate and
runs itself once a week (Sunday 09:00 by default), followed by any other
weekly jobs such as the savings review.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

import structlog

from homekeeper.config import Settings
from homekeeper.core.clock import Clock, system_clock
from homekeeper.notifications.engagement import EngagementTracker
from homekeeper.notifications.preferences import PreferenceStore
from homekeeper.notifications.rules import next_weekday_at

logger = structlog.get_logger()


class FrequencyOptimizer:
    def __init__(
        self,
        preferences: PreferenceStore,
        engagement: EngagementTracker,
        settings: Settings,
        clock: Clock | None = None,
        weekly_jobs: Sequence[Callable[[], Awaitable[object]]] = (),
    ) -> None:
        self._preferences = preferences
        self._engagement = engagement
        self._settings = settings
        self._clock = clock or system_clock(settings.timezone)
        self._weekly_jobs = list(weekly_jobs)
        self.runs = 0

    def optimize(self) -> int:
        """Nudge weekly_limit down for low engagement, up for high. Returns the limit in effect."""
        prefs = self._preferences.get()
        limit = prefs.frequency.weekly_limit
        if not self._engagement.get_analytics():
            logger.info("frequency_optimization_skipped", reason="no_history", weekly_limit=limit)
            return limit

        rate = self._engagement.get_profile().response_rate
        s = self._settings
        if rate < s.low_response_rate:
            new_limit = max(s.weekly_limit_floor, limit - 1)
        elif rate > s.high_response_rate:
            new_limit = min(s.weekly_limit_ceiling, limit + 1)
        else:
            new_limit = limit

        if new_limit != limit:
            self._preferences.update({"frequency": {"weekly_limit": new_limit}})
        logger.info("frequency_optimized", response_rate=rate, old_limit=limit, new_limit=new_limit)
        return new_limit

    def next_run_at(self, now: datetime) -> datetime:
        return next_weekday_at(now, self._settings.optimizer_weekday, self._settings.optimizer_hour)

    def run_once(self) -> int:
        """Optimize and log the short-term report."""
        limit = self.optimize()
        report = self._engagement.generate_report(self._settings.optimizer_report_days)
        self.runs += 1
        logger.info(
            "weekly_optimization_complete",
            open_rate=report.open_rate,
            total_sent=report.total_sent,
            weekly_limit=limit,
        )
        return limit

    async def run_weekly(self) -> int:
        """Optimize, then run the other weekly jobs. A failing job does not stop the rest."""
        limit = self.run_once()
        for job in self._weekly_jobs:
            try:
                await job()
            except Exception:
                logger.exception("weekly_job_failed", job=getattr(job, "__name__", repr(job)))
        return limit

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Sleep until each weekly slot and optimize, until stop_event is set."""
        while not stop_event.is_set():
            now = self._clock()
            run_at = self.next_run_at(now)
            delay = (run_at - now).total_seconds()
            logger.info("optimizer_sleeping", next_run=run_at.isoformat(), seconds=round(delay))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_weekly()
            except Exception:
                logger.exception("weekly_optimization_failed")
