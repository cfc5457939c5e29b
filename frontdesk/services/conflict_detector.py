"""
Same-staff overlap detection.

Windows are half-open, ``[start_at, end_at)``: an appointment ending at
11:00 and another starting at 11:00 do not conflict. Unassigned bookings
(``staff_id is None``) are never checked.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..models import Appointment, end_for
from .store import AppointmentStore

LOG = logging.getLogger(__name__)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


class ConflictDetector:
    def __init__(self, store: AppointmentStore) -> None:
        self.store = store

    async def find_conflict(
        self,
        staff_id: Optional[str],
        start_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        """First active appointment of ``staff_id`` overlapping the candidate window."""
        if staff_id is None:
            return None
        end_at = end_for(start_at, duration)
        booked = await self.store.find_appointments_by_staff(staff_id, active_only=True)
        for existing in booked:
            if existing.id == exclude_appointment_id or not existing.active:
                continue
            other_start, other_end = existing.window()
            if overlaps(start_at, end_at, other_start, other_end):
                LOG.debug(
                    "overlap found",
                    extra={"staff_id": staff_id, "conflicting_appointment_id": existing.id},
                )
                return existing
        return None

    async def has_conflict(
        self,
        staff_id: Optional[str],
        start_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str] = None,
    ) -> bool:
        found = await self.find_conflict(staff_id, start_at, duration, exclude_appointment_id)
        return found is not None
