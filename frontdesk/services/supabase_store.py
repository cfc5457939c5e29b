from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from ..errors import AppointmentNotFoundError, StoreError
from ..models import SCHEDULED, Appointment, Patient, serialize_patch
from ..settings import Settings
from .store import AppointmentStore

LOG = logging.getLogger(__name__)

Params = Union[Dict[str, Any], Sequence[Tuple[str, Any]]]


class SupabaseStore(AppointmentStore):
    """Appointment store on Supabase PostgREST with async httpx under the hood."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not api_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be configured")
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._client = httpx.AsyncClient(
            base_url=self._rest_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Prefer": "return=representation",
            },
            timeout=timeout,
            transport=transport,
        )
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStore":
        return cls(settings.supabase_url or "", settings.supabase_key or "", timeout=settings.store_timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> bool:
        try:
            response = await self._client.get("/appointments", params={"select": "id", "limit": 1})
            response.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            LOG.error("Supabase health check failed: %s", exc)
            return False

    @staticmethod
    def _iso(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        LOG.debug("supabase request", extra={"method": method, "path": path, "kwargs": kwargs})
        try:
            async with self._lock:
                response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"{method} {path} failed with HTTP {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc
        LOG.debug(
            "supabase response",
            extra={"method": method, "path": path, "status": response.status_code},
        )
        if response.status_code == 204:
            return []
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"{method} {path} returned a non-JSON body") from exc

    @staticmethod
    def _appointment(row: Any) -> Appointment:
        try:
            return Appointment.from_record(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"malformed appointment row: {row!r}") from exc

    @staticmethod
    def _patient(row: Any) -> Patient:
        try:
            return Patient.from_record(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"malformed patient row: {row!r}") from exc

    async def _rows(self, method: str, path: str, **kwargs: Any) -> List[Any]:
        data = await self._request(method, path, **kwargs)
        if not isinstance(data, list):
            raise StoreError(f"{method} {path} returned {type(data).__name__}, expected a list of rows")
        return data

    async def _select_appointments(self, params: Params) -> List[Appointment]:
        rows = await self._rows("GET", "/appointments", params=params)
        return [self._appointment(row) for row in rows]

    async def find_appointments_by_staff(
        self, staff_id: str, active_only: bool = True
    ) -> List[Appointment]:
        params: Dict[str, Any] = {
            "select": "*",
            "staff_id": f"eq.{staff_id}",
            "order": "start_at",
        }
        if active_only:
            params["status"] = f"eq.{SCHEDULED}"
        return await self._select_appointments(params)

    async def find_appointments_by_patient(
        self, patient_id: str, active_only: bool = True
    ) -> List[Appointment]:
        params: Dict[str, Any] = {
            "select": "*",
            "patient_id": f"eq.{patient_id}",
            "order": "start_at",
        }
        if active_only:
            params["status"] = f"eq.{SCHEDULED}"
        return await self._select_appointments(params)

    async def list_appointments(
        self,
        start_from: datetime,
        start_to: datetime,
        staff_id: Optional[str] = None,
    ) -> List[Appointment]:
        # Repeated keys so both bounds reach PostgREST.
        params: List[Tuple[str, Any]] = [
            ("select", "*"),
            ("order", "start_at"),
            ("start_at", f"gte.{self._iso(start_from)}"),
            ("start_at", f"lte.{self._iso(start_to)}"),
        ]
        if staff_id:
            params.append(("staff_id", f"eq.{staff_id}"))
        return await self._select_appointments(params)

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        found = await self._select_appointments({"id": f"eq.{appointment_id}", "select": "*"})
        return found[0] if found else None

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        data = await self._rows("POST", "/appointments", json=appointment.to_record())
        if not data:
            raise StoreError("insert returned no representation")
        return self._appointment(data[0])

    async def update_appointment(self, appointment_id: str, patch: Dict[str, Any]) -> Appointment:
        data = await self._rows(
            "PATCH",
            "/appointments",
            params={"id": f"eq.{appointment_id}"},
            json=serialize_patch(patch),
        )
        if not data:
            raise AppointmentNotFoundError(appointment_id)
        return self._appointment(data[0])

    async def find_patient_by_id(self, patient_id: str) -> Optional[Patient]:
        data = await self._rows(
            "GET",
            "/patients",
            params={"id": f"eq.{patient_id}", "select": "id,name,deleted_at"},
        )
        return self._patient(data[0]) if data else None
