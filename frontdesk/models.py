from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional
from uuid import uuid4

from dateutil import parser


AppointmentStatus = Literal["scheduled", "completed", "cancelled", "no_show"]

SCHEDULED: AppointmentStatus = "scheduled"
COMPLETED: AppointmentStatus = "completed"
CANCELLED: AppointmentStatus = "cancelled"
NO_SHOW: AppointmentStatus = "no_show"

STATUSES = (SCHEDULED, COMPLETED, CANCELLED, NO_SHOW)

# Only scheduled appointments can move; everything else is terminal.
TRANSITIONS: Dict[str, frozenset] = {
    SCHEDULED: frozenset({COMPLETED, CANCELLED, NO_SHOW}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    NO_SHOW: frozenset(),
}

_TIMESTAMP_FIELDS = ("start_at", "end_at", "created_at", "updated_at", "admin_memo_resolved_at")


def utc(dt: datetime) -> datetime:
    if not dt.tzinfo:
        raise ValueError("naive datetime has no instant")
    return dt.astimezone(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return utc(dt).isoformat() if dt is not None else None


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    dt = parser.isoparse(value)
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def end_for(start_at: datetime, duration: int) -> datetime:
    return start_at + timedelta(minutes=duration)


def is_active(status: str) -> bool:
    return status == SCHEDULED


@dataclass
class Patient:
    id: str
    name: str = ""
    deleted_at: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.deleted_at is None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Patient":
        return cls(
            id=str(record["id"]),
            name=record.get("name") or "",
            deleted_at=_parse_ts(record.get("deleted_at")),
        )


@dataclass
class BookingRequest:
    patient_id: str | None
    start_at: Any
    duration: Any = 60
    staff_id: str | None = None


@dataclass
class Appointment:
    patient_id: str
    start_at: datetime
    end_at: datetime
    duration: int
    staff_id: str | None = None
    status: str = SCHEDULED
    memo: str | None = None
    admin_memo: str | None = None
    is_memo_resolved: bool = True
    admin_memo_resolved_at: datetime | None = None
    admin_memo_resolved_by: str | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def active(self) -> bool:
        return is_active(self.status)

    def window(self) -> tuple[datetime, datetime]:
        """Half-open ``[start_at, end_at)`` interval used for conflict checks."""
        return self.start_at, end_for(self.start_at, self.duration)

    def copy(self, **changes: Any) -> "Appointment":
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            record[item.name] = _iso(value) if item.name in _TIMESTAMP_FIELDS else value
        return record

    to_dict = to_record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Appointment":
        known = {item.name for item in fields(cls)}
        data = {key: value for key, value in record.items() if key in known}
        for name in _TIMESTAMP_FIELDS:
            if name in data:
                data[name] = _parse_ts(data[name])
        data["id"] = str(data["id"])
        data["duration"] = int(data["duration"])
        return cls(**data)


def serialize_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _iso(value) if key in _TIMESTAMP_FIELDS else value for key, value in patch.items()}
