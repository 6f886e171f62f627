"""Wall-clock source shared by the scheduling components."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def system_clock(tz: tzinfo | str = "UTC") -> Clock:
    """Return a clock producing aware datetimes in the given zone."""
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz

    def now() -> datetime:
        return datetime.now(zone)

    return now
