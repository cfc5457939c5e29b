"""Typed failures raised by the scheduling core."""

from __future__ import annotations

from typing import Any, Dict, Optional


class SchedulingError(Exception):
    kind = "scheduling_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": str(self)}


class ValidationError(SchedulingError):
    """Bad input shape or a dangling reference; the caller corrects and resubmits."""

    kind = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"field": self.field, "reason": self.reason})
        return payload


class AppointmentNotFoundError(ValidationError):
    kind = "not_found"

    def __init__(self, appointment_id: str) -> None:
        super().__init__("appointment_id", f"appointment {appointment_id!r} does not exist")
        self.appointment_id = appointment_id


class ConflictError(SchedulingError):
    """The request is valid but the staff member is already booked in that window."""

    kind = "conflict"

    def __init__(self, staff_id: str, conflicting_appointment_id: str) -> None:
        super().__init__(
            f"staff {staff_id!r} is already booked by appointment {conflicting_appointment_id!r}"
        )
        self.staff_id = staff_id
        self.conflicting_appointment_id = conflicting_appointment_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "staff_id": self.staff_id,
                "conflicting_appointment_id": self.conflicting_appointment_id,
            }
        )
        return payload


class InvalidTransitionError(SchedulingError):
    kind = "invalid_transition"

    def __init__(self, current: str, requested: str, appointment_id: Optional[str] = None) -> None:
        super().__init__(f"cannot move appointment from {current!r} to {requested!r}")
        self.current = current
        self.requested = requested
        self.appointment_id = appointment_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"current": self.current, "requested": self.requested})
        return payload


class StoreError(SchedulingError):
    """The backing store failed; retry policy belongs to the caller."""

    kind = "store_error"
