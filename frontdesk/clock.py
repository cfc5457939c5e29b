"""Time sources for the scheduling core.

The manager never calls ``datetime.now`` itself; it asks an injected clock.
``SystemClock`` reads the wall clock and, in demo mode, replays the current
time-of-day on a frozen calendar date so that "two hours from now" still
behaves during a demo. ``FixedClock`` pins a single instant for tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional

from .settings import Settings


class Clock(ABC):
    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self.tz = tz

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()


class SystemClock(Clock):
    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        demo_date: Optional[date] = None,
        source: Callable[..., datetime] = datetime.now,
    ) -> None:
        super().__init__(tz)
        self.demo_date = demo_date
        self._source = source

    @property
    def demo_mode(self) -> bool:
        return self.demo_date is not None

    def now(self) -> datetime:
        real_now = self._source(tz=self.tz)
        if self.demo_date is None:
            return real_now
        # Keep the business-zone time of day, swap in the demo calendar date.
        return datetime.combine(self.demo_date, real_now.timetz())

    @classmethod
    def from_settings(cls, settings: Settings) -> "SystemClock":
        tz = timezone(timedelta(minutes=settings.business_utc_offset_minutes))
        return cls(tz=tz, demo_date=settings.demo_fixed_date if settings.demo_mode else None)


class FixedClock(Clock):
    def __init__(self, instant: datetime, tz: Optional[tzinfo] = None) -> None:
        if not instant.tzinfo:
            raise ValueError("FixedClock needs a timezone-aware instant")
        super().__init__(tz or instant.tzinfo)
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **delta: float) -> None:
        self.instant = self.instant + timedelta(**delta)
