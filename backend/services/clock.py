from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...

    def time_of_day(self) -> str: ...


class SystemClock:
    """Business calendar in the configured time zone."""

    def __init__(self, tz: str | None = None):
        self.tz = ZoneInfo(tz or settings.TIMEZONE)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def time_of_day(self) -> str:
        return self.now().strftime("%H:%M")


system_clock = SystemClock()
