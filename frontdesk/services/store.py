"""
Appointment store interface.

The scheduling core only talks to persistence through ``AppointmentStore``.
``MemoryStore`` keeps everything in process and backs the tests and local
demo runs; ``SupabaseStore`` (supabase_store.py) talks to PostgREST.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..errors import AppointmentNotFoundError, StoreError
from ..models import Appointment, Patient, is_active

LOG = logging.getLogger(__name__)


class AppointmentStore(ABC):
    """Operations the scheduling core needs from persistence.

    Implementations return fresh ``Appointment`` objects; mutating a
    returned record never changes stored state.
    """

    @abstractmethod
    async def find_appointments_by_staff(
        self, staff_id: str, active_only: bool = True
    ) -> List[Appointment]:
        ...

    @abstractmethod
    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        ...

    @abstractmethod
    async def update_appointment(self, appointment_id: str, patch: Dict[str, Any]) -> Appointment:
        """Apply ``patch`` and return the stored record.

        Raises:
            AppointmentNotFoundError: no appointment with that id
        """

    @abstractmethod
    async def find_patient_by_id(self, patient_id: str) -> Optional[Patient]:
        ...

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        ...

    @abstractmethod
    async def list_appointments(
        self,
        start_from: datetime,
        start_to: datetime,
        staff_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Appointments with ``start_from <= start_at <= start_to``, ordered by start."""

    @abstractmethod
    async def find_appointments_by_patient(
        self, patient_id: str, active_only: bool = True
    ) -> List[Appointment]:
        ...

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryStore(AppointmentStore):
    def __init__(
        self,
        patients: Iterable[Patient] = (),
        appointments: Iterable[Appointment] = (),
    ) -> None:
        self._patients: Dict[str, Patient] = {p.id: p for p in patients}
        self._appointments: Dict[str, Appointment] = {a.id: a.copy() for a in appointments}

    def add_patient(self, patient: Patient) -> Patient:
        self._patients[patient.id] = patient
        return patient

    def _select(self, predicate) -> List[Appointment]:
        rows = [a.copy() for a in self._appointments.values() if predicate(a)]
        rows.sort(key=lambda a: a.start_at)
        return rows

    async def find_appointments_by_staff(
        self, staff_id: str, active_only: bool = True
    ) -> List[Appointment]:
        return self._select(
            lambda a: a.staff_id == staff_id and (not active_only or is_active(a.status))
        )

    async def find_appointments_by_patient(
        self, patient_id: str, active_only: bool = True
    ) -> List[Appointment]:
        return self._select(
            lambda a: a.patient_id == patient_id and (not active_only or is_active(a.status))
        )

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        if appointment.id in self._appointments:
            raise StoreError(f"appointment {appointment.id!r} already exists")
        self._appointments[appointment.id] = appointment.copy()
        LOG.debug("memory store insert", extra={"appointment_id": appointment.id})
        return appointment.copy()

    async def update_appointment(self, appointment_id: str, patch: Dict[str, Any]) -> Appointment:
        current = self._appointments.get(appointment_id)
        if current is None:
            raise AppointmentNotFoundError(appointment_id)
        updated = current.copy(**patch)
        self._appointments[appointment_id] = updated
        LOG.debug(
            "memory store update",
            extra={"appointment_id": appointment_id, "fields": sorted(patch)},
        )
        return updated.copy()

    async def find_patient_by_id(self, patient_id: str) -> Optional[Patient]:
        return self._patients.get(patient_id)

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        found = self._appointments.get(appointment_id)
        return found.copy() if found else None

    async def list_appointments(
        self,
        start_from: datetime,
        start_to: datetime,
        staff_id: Optional[str] = None,
    ) -> List[Appointment]:
        return self._select(
            lambda a: start_from <= a.start_at <= start_to
            and (staff_id is None or a.staff_id == staff_id)
        )
