"""
clock.py
--------
Injectable "current time" for the engine.

Services take a clock instead of calling timezone.now() directly so tests can
pin the instant used for horizon checks, past-slot filtering and waitlist
expiry.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from django.utils import timezone


class SystemClock:
    def now(self) -> datetime:
        return timezone.now()

    def today(self, tz: ZoneInfo) -> date:
        return self.now().astimezone(tz).date()


class FixedClock(SystemClock):
    """Clock pinned to one aware instant; advance() moves it forward."""

    def __init__(self, instant: datetime):
        if timezone.is_naive(instant):
            raise ValueError("FixedClock requires an aware datetime")
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> None:
        self._instant = self._instant + timedelta(**kwargs)
