"""ISO week helpers for weekly counts and stats."""

from __future__ import annotations

from datetime import date, datetime, timedelta


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def weeks_between(start: datetime, end: datetime) -> list[str]:
    """ISO week strings touched by [start, end], oldest first."""
    weeks: list[str] = []
    cursor = get_monday(start)
    last = get_monday(end)
    while cursor <= last:
        weeks.append(get_week_iso(cursor))
        cursor += timedelta(weeks=1)
    return weeks
