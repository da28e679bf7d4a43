"""Time source for date comparisons in the fee engine."""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock pinned to a given day (and optionally a time). Used by tests and CLI previews."""

    def __init__(self, today: date, at: Optional[time] = None):
        self._today = today
        self._at = at or time(12, 0)

    def now(self) -> datetime:
        return datetime.combine(self._today, self._at, tzinfo=timezone.utc)

    def today(self) -> date:
        return self._today

    def advance(self, days: int = 1) -> None:
        self._today = self._today + timedelta(days=days)


system_clock = SystemClock()
