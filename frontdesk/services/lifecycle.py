"""
Appointment lifecycle manager.

The only component allowed to write appointment state. Every write that can
create an overlap (create, reschedule) runs "check conflicts, then write"
while holding the lock of each staff member involved, so two front-desk
operators cannot both book the same slot.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..clock import Clock, SystemClock
from ..errors import AppointmentNotFoundError, ConflictError, InvalidTransitionError, ValidationError
from ..models import (
    CANCELLED,
    COMPLETED,
    NO_SHOW,
    SCHEDULED,
    STATUSES,
    TRANSITIONS,
    Appointment,
    BookingRequest,
    end_for,
)
from .conflict_detector import ConflictDetector
from .slot_validator import SlotValidator
from .store import AppointmentStore
from .zone_boundary import BusinessZone

LOG = logging.getLogger(__name__)

DEFAULT_DURATION = 60


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


UNCHANGED: Any = _Unchanged()

RangeBound = Union[date, datetime, str]


def _staff_key(staff_id: Optional[str]) -> tuple:
    return (staff_id is not None, staff_id or "")


class AppointmentManager:
    def __init__(
        self,
        store: AppointmentStore,
        clock: Optional[Clock] = None,
        zone: Optional[BusinessZone] = None,
        validator: Optional[SlotValidator] = None,
        detector: Optional[ConflictDetector] = None,
        default_duration: int = DEFAULT_DURATION,
    ) -> None:
        self.store = store
        self.zone = zone or BusinessZone()
        self.clock = clock or SystemClock(tz=self.zone.tz)
        self.validator = validator or SlotValidator(store, zone=self.zone)
        self.detector = detector or ConflictDetector(store)
        self.default_duration = default_duration
        self._locks: Dict[Optional[str], asyncio.Lock] = {}
        self._lock_users: Dict[Optional[str], int] = {}

    def _now(self) -> datetime:
        return self.clock.now().astimezone(timezone.utc)

    @asynccontextmanager
    async def _staff_locks(self, *staff_ids: Optional[str]) -> AsyncIterator[None]:
        # Fixed acquisition order so crossing reschedules cannot deadlock.
        keys = sorted(set(staff_ids), key=_staff_key)
        for key in keys:
            self._locks.setdefault(key, asyncio.Lock())
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for key in keys:
                    await stack.enter_async_context(self._locks[key])
                yield
        finally:
            # A lock is dropped once nobody holds or waits on it.
            for key in keys:
                self._lock_users[key] -= 1
                if not self._lock_users[key]:
                    del self._lock_users[key]
                    del self._locks[key]

    @asynccontextmanager
    async def _hold(self, appointment_id: str, *extra_staff: Optional[str]) -> AsyncIterator[Appointment]:
        """Yield the appointment while its staff member (and ``extra_staff``) are locked."""
        while True:
            snapshot = await self.get(appointment_id)
            async with self._staff_locks(snapshot.staff_id, *extra_staff):
                current = await self.get(appointment_id)
                if current.staff_id == snapshot.staff_id:
                    yield current
                    return
            LOG.debug("staff changed while waiting for lock; retrying", extra={"appointment_id": appointment_id})

    async def _ensure_free(
        self,
        staff_id: Optional[str],
        start_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str] = None,
    ) -> None:
        conflict = await self.detector.find_conflict(staff_id, start_at, duration, exclude_appointment_id)
        if conflict is not None:
            LOG.warning(
                "booking conflicts with existing appointment",
                extra={
                    "staff_id": staff_id,
                    "start_at": start_at.isoformat(),
                    "duration": duration,
                    "conflicting_appointment_id": conflict.id,
                },
            )
            raise ConflictError(staff_id or "", conflict.id)

    async def get(self, appointment_id: str) -> Appointment:
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    async def create(
        self,
        patient_id: str,
        start_at: Union[datetime, str],
        memo: Optional[str] = None,
        staff_id: Optional[str] = None,
        duration: Optional[int] = None,
        admin_memo: Optional[str] = None,
        operator_id: Optional[str] = None,
    ) -> Appointment:
        """Book a new appointment.

        ``start_at`` must already be an instant; wall-clock input is converted
        with ``BusinessZone.to_instant`` before it gets here.

        Raises:
            ValidationError: bad patient, duration or start
            ConflictError: the staff member is already booked in that window
        """
        staff_id = staff_id or None
        duration = self.default_duration if duration is None else duration
        request = BookingRequest(patient_id=patient_id, start_at=start_at, duration=duration, staff_id=staff_id)
        async with self._staff_locks(staff_id):
            start = await self.validator.validate(request)
            await self._ensure_free(staff_id, start, duration)
            now = self._now()
            appointment = Appointment(
                patient_id=patient_id,
                staff_id=staff_id,
                start_at=start,
                end_at=end_for(start, duration),
                duration=duration,
                status=SCHEDULED,
                memo=memo or None,
                admin_memo=admin_memo or None,
                is_memo_resolved=not admin_memo,
                created_by=operator_id,
                updated_by=operator_id,
                created_at=now,
                updated_at=now,
            )
            saved = await self.store.insert_appointment(appointment)
        LOG.info(
            "appointment created",
            extra={
                "appointment_id": saved.id,
                "patient_id": patient_id,
                "staff_id": staff_id,
                "start_at": saved.start_at.isoformat(),
                "duration": duration,
            },
        )
        return saved

    async def reschedule(
        self,
        appointment_id: str,
        new_start_at: Union[datetime, str],
        new_duration: Optional[int] = None,
        staff_id: Optional[str] = UNCHANGED,
        operator_id: Optional[str] = None,
    ) -> Appointment:
        """Move a scheduled appointment, optionally to another staff member.

        The appointment's own prior window never counts as a conflict.
        """
        extra = () if staff_id is UNCHANGED else (staff_id or None,)
        async with self._hold(appointment_id, *extra) as current:
            if current.status != SCHEDULED:
                raise InvalidTransitionError(current.status, SCHEDULED, appointment_id)
            target_staff = current.staff_id if staff_id is UNCHANGED else (staff_id or None)
            duration = current.duration if new_duration is None else new_duration
            request = BookingRequest(
                patient_id=current.patient_id,
                start_at=new_start_at,
                duration=duration,
                staff_id=target_staff,
            )
            start = await self.validator.validate(request)
            await self._ensure_free(target_staff, start, duration, exclude_appointment_id=appointment_id)
            patch = {
                "start_at": start,
                "end_at": end_for(start, duration),
                "duration": duration,
                "staff_id": target_staff,
                "updated_by": operator_id,
                "updated_at": self._now(),
            }
            updated = await self.store.update_appointment(appointment_id, patch)
        LOG.info(
            "appointment rescheduled",
            extra={
                "appointment_id": appointment_id,
                "staff_id": target_staff,
                "start_at": start.isoformat(),
                "duration": duration,
            },
        )
        return updated

    async def transition(
        self,
        appointment_id: str,
        new_status: str,
        operator_id: Optional[str] = None,
    ) -> Appointment:
        if new_status not in STATUSES:
            raise ValidationError("status", f"unknown status {new_status!r}")
        async with self._hold(appointment_id) as current:
            if new_status not in TRANSITIONS[current.status]:
                raise InvalidTransitionError(current.status, new_status, appointment_id)
            updated = await self.store.update_appointment(
                appointment_id,
                {"status": new_status, "updated_by": operator_id, "updated_at": self._now()},
            )
        LOG.info(
            "appointment status changed",
            extra={"appointment_id": appointment_id, "from": current.status, "to": new_status},
        )
        return updated

    async def cancel(self, appointment_id: str, operator_id: Optional[str] = None) -> Appointment:
        return await self.transition(appointment_id, CANCELLED, operator_id)

    async def complete(self, appointment_id: str, operator_id: Optional[str] = None) -> Appointment:
        return await self.transition(appointment_id, COMPLETED, operator_id)

    async def mark_no_show(self, appointment_id: str, operator_id: Optional[str] = None) -> Appointment:
        return await self.transition(appointment_id, NO_SHOW, operator_id)

    def _range_bound(self, value: RangeBound, upper: bool) -> datetime:
        if isinstance(value, datetime):
            return self.zone.parse_instant(value, field="end" if upper else "start")
        if isinstance(value, date):
            return self.zone.day_end(value) if upper else self.zone.day_start(value)
        text = str(value).strip()
        if len(text) == 10:
            return self.zone.day_end(text) if upper else self.zone.day_start(text)
        return self.zone.parse_instant(text, field="end" if upper else "start")

    async def list_for_range(
        self,
        start: RangeBound,
        end: RangeBound,
        staff_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Appointments starting within ``[start, end]``.

        Calendar dates expand to whole business days: a start date becomes
        its zone midnight, an end date its 23:59:59.999.
        """
        start_at = self._range_bound(start, upper=False)
        end_at = self._range_bound(end, upper=True)
        if end_at < start_at:
            raise ValidationError("end", "range end is before its start")
        return await self.store.list_appointments(start_at, end_at, staff_id=staff_id or None)

    async def list_for_day(
        self,
        day: Optional[Union[date, str]] = None,
        staff_id: Optional[str] = None,
    ) -> List[Appointment]:
        day = day or self.zone.today(self.clock)
        return await self.list_for_range(day, day, staff_id=staff_id)

    async def update_memos(
        self,
        appointment_id: str,
        memo: Optional[str] = UNCHANGED,
        admin_memo: Optional[str] = UNCHANGED,
        operator_id: Optional[str] = None,
    ) -> Appointment:
        await self.get(appointment_id)
        patch: Dict[str, Any] = {"updated_by": operator_id, "updated_at": self._now()}
        if memo is not UNCHANGED:
            patch["memo"] = memo or None
        if admin_memo is not UNCHANGED:
            patch["admin_memo"] = admin_memo or None
            patch["is_memo_resolved"] = not admin_memo
            patch["admin_memo_resolved_at"] = None
            patch["admin_memo_resolved_by"] = None
        return await self.store.update_appointment(appointment_id, patch)

    async def set_admin_memo_resolution(
        self,
        appointment_id: str,
        resolved: bool,
        operator_id: Optional[str] = None,
    ) -> Appointment:
        current = await self.get(appointment_id)
        # Without an admin memo there is nothing left open.
        resolved = resolved or not current.admin_memo
        now = self._now()
        patch = {
            "is_memo_resolved": resolved,
            "admin_memo_resolved_at": now if resolved else None,
            "admin_memo_resolved_by": operator_id if resolved else None,
            "updated_at": now,
        }
        if operator_id:
            patch["updated_by"] = operator_id
        return await self.store.update_appointment(appointment_id, patch)

    async def cancel_future_for_patient(
        self,
        patient_id: str,
        operator_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Cancel a patient's scheduled appointments from now on (patient removal)."""
        now = self._now()
        upcoming = await self.store.find_appointments_by_patient(patient_id, active_only=True)
        cancelled = []
        for appointment in upcoming:
            if appointment.start_at < now:
                continue
            cancelled.append(await self.cancel(appointment.id, operator_id))
        LOG.info(
            "future appointments cancelled",
            extra={"patient_id": patient_id, "count": len(cancelled)},
        )
        return cancelled
