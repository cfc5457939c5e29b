from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..errors import ValidationError
from ..models import BookingRequest
from .store import AppointmentStore
from .zone_boundary import BusinessZone

LOG = logging.getLogger(__name__)

MIN_DURATION = 15
MAX_DURATION = 480


class SlotValidator:
    """Structural and referential checks for a booking request.

    Checks run in a fixed order and stop at the first failure: patient,
    then duration, then start instant. Conflicts are not its concern.
    """

    def __init__(
        self,
        store: AppointmentStore,
        zone: Optional[BusinessZone] = None,
        min_duration: int = MIN_DURATION,
        max_duration: int = MAX_DURATION,
        min_start_at: Optional[datetime] = None,
    ) -> None:
        self.store = store
        self.zone = zone or BusinessZone()
        self.min_duration = min_duration
        self.max_duration = max_duration
        self.min_start_at = min_start_at

    async def validate(self, request: BookingRequest) -> datetime:
        """Return the request's start as a UTC instant or raise ``ValidationError``."""
        await self._check_patient(request.patient_id)
        self._check_duration(request.duration)
        return self._check_start(request.start_at)

    async def _check_patient(self, patient_id: Optional[str]) -> None:
        if not patient_id or not str(patient_id).strip():
            raise ValidationError("patient_id", "a patient is required")
        patient = await self.store.find_patient_by_id(patient_id)
        if patient is None or not patient.exists:
            LOG.info("booking rejected for unknown patient", extra={"patient_id": patient_id})
            raise ValidationError("patient_id", f"patient {patient_id!r} does not exist")

    def _check_duration(self, duration: object) -> None:
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise ValidationError("duration", "duration must be a whole number of minutes")
        if not self.min_duration <= duration <= self.max_duration:
            raise ValidationError(
                "duration",
                f"duration must be between {self.min_duration} and {self.max_duration} minutes",
            )

    def _check_start(self, start_at: object) -> datetime:
        instant = self.zone.parse_instant(start_at, field="start_at")
        if self.min_start_at is not None and instant < self.min_start_at:
            raise ValidationError(
                "start_at", f"start must not be earlier than {self.min_start_at.isoformat()}"
            )
        return instant
