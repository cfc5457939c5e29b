from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Tuple, Union

from dateutil import parser

from ..clock import Clock
from ..errors import ValidationError

DayLike = Union[date, datetime, str]

JST_OFFSET_MINUTES = 9 * 60
_LAST_MILLISECOND = timedelta(milliseconds=1)


class BusinessZone:
    """Fixed-offset business timezone (no DST) and its day boundaries in UTC.

    Every conversion from front-desk wall-clock input to a stored instant
    goes through ``to_instant`` or ``parse_instant``; nothing else in the
    core attaches a timezone to a naive value.
    """

    def __init__(self, offset_minutes: int = JST_OFFSET_MINUTES, name: str | None = None) -> None:
        self.offset = timedelta(minutes=offset_minutes)
        self.tz = timezone(self.offset, name) if name else timezone(self.offset)

    def __repr__(self) -> str:
        return f"BusinessZone({self.tz!r})"

    def local_date(self, instant: datetime) -> date:
        if not instant.tzinfo:
            raise ValueError("naive datetime has no business date")
        return instant.astimezone(self.tz).date()

    def _as_date(self, day: DayLike, field: str = "date") -> date:
        if isinstance(day, datetime):
            return self.local_date(day)
        if isinstance(day, date):
            return day
        try:
            return date.fromisoformat(str(day).strip())
        except ValueError as exc:
            raise ValidationError(field, f"expected YYYY-MM-DD, got {day!r}") from exc

    def day_start(self, day: DayLike) -> datetime:
        """Business-zone midnight of ``day`` as a UTC instant."""
        local_day = self._as_date(day)
        # Zone midnight in storage time is the same wall clock minus the offset.
        return datetime.combine(local_day, time.min, tzinfo=timezone.utc) - self.offset

    def day_end(self, day: DayLike) -> datetime:
        """Business-zone 23:59:59.999 of ``day`` as a UTC instant (inclusive bound)."""
        return self.day_start(day) + timedelta(days=1) - _LAST_MILLISECOND

    def day_bounds(self, day: DayLike) -> Tuple[datetime, datetime]:
        return self.day_start(day), self.day_end(day)

    def today(self, clock: Clock) -> date:
        return self.local_date(clock.now())

    def to_instant(self, visit_date: Union[date, str], visit_time: Union[time, str]) -> datetime:
        local_day = self._as_date(visit_date, "visit_date")
        if isinstance(visit_time, time):
            local_time = visit_time
        else:
            try:
                local_time = time.fromisoformat(str(visit_time).strip())
            except ValueError as exc:
                raise ValidationError("visit_time", f"expected HH:MM, got {visit_time!r}") from exc
        wall_clock = datetime.combine(local_day, local_time.replace(tzinfo=None), tzinfo=self.tz)
        return wall_clock.astimezone(timezone.utc)

    def parse_instant(self, value: Any, field: str = "start_at") -> datetime:
        if isinstance(value, datetime):
            if not value.tzinfo:
                raise ValidationError(field, "timezone-naive datetime is not an instant")
            return value.astimezone(timezone.utc)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field, "an ISO-8601 instant is required")
        try:
            parsed = parser.isoparse(value.strip())
        except (ValueError, OverflowError) as exc:
            raise ValidationError(field, f"unparseable instant {value!r}") from exc
        if not parsed.tzinfo:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed.astimezone(timezone.utc)
