"""
Schedule arithmetic (``delivery_kernel.domain.schedule``).

Shifts baseline dates by a variation's day impact, counting either
calendar days or working days (Monday to Friday).  Which one applies is
configuration; the kernel receives it as a ``DayImpactMode``.
"""

from __future__ import annotations

from datetime import date, timedelta
from enum import Enum


class DayImpactMode(str, Enum):
    CALENDAR = "calendar"
    WORKING = "working"


def is_working_day(day: date) -> bool:
    return day.weekday() < 5


def shift_date(day: date, days: int, mode: DayImpactMode = DayImpactMode.CALENDAR) -> date:
    """Move ``day`` by ``days`` (negative moves earlier)."""
    if mode is DayImpactMode.CALENDAR or days == 0:
        return day + timedelta(days=days)

    step = timedelta(days=1 if days > 0 else -1)
    remaining = abs(days)
    current = day
    while remaining:
        current += step
        if is_working_day(current):
            remaining -= 1
    return current
