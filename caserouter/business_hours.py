"""
Operating-hours calendar consulted by the scheduled escalation run.
The window is configured by weekday set and [start, end) hour in a named timezone.
"""

from datetime import datetime
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from caserouter.config import (
    BUSINESS_DAYS,
    BUSINESS_END_HOUR,
    BUSINESS_START_HOUR,
    BUSINESS_TIMEZONE,
)


class Calendar(Protocol):
    def is_within(self, now: datetime) -> bool:
        ...


class BusinessHoursCalendar:
    """Weekday/hour window, e.g. Mon-Fri 08:00-18:00 in BUSINESS_TIMEZONE."""

    def __init__(
        self,
        days: Optional[frozenset[int]] = None,
        start_hour: int = BUSINESS_START_HOUR,
        end_hour: int = BUSINESS_END_HOUR,
        tz: str = BUSINESS_TIMEZONE,
    ):
        self.days = BUSINESS_DAYS if days is None else days
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.tz = ZoneInfo(tz)

    def is_within(self, now: datetime) -> bool:
        local = now.astimezone(self.tz)
        if local.weekday() not in self.days:
            return False
        return self.start_hour <= local.hour < self.end_hour


class AlwaysOpenCalendar:
    """Calendar for deployments without operating hours."""

    def is_within(self, now: datetime) -> bool:
        return True
