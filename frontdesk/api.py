from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from .clock import SystemClock
from .errors import (
    AppointmentNotFoundError,
    ConflictError,
    InvalidTransitionError,
    SchedulingError,
    StoreError,
    ValidationError,
)
from .services import AppointmentManager, AppointmentStore, BusinessZone, MemoryStore, SlotValidator, SupabaseStore
from .services.lifecycle import UNCHANGED
from .settings import Settings, get_settings


logger = logging.getLogger("frontdesk.api")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)

_STATUS_CODES = (
    (AppointmentNotFoundError, 404),
    (ValidationError, 422),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
    (StoreError, 502),
)


class AppointmentCreate(BaseModel):
    patient_id: str = Field(..., description="Patient being booked")
    visit_date: str | None = Field(default=None, description="Business-zone date, YYYY-MM-DD")
    visit_time: str | None = Field(default=None, description="Business-zone wall clock, HH:MM")
    start_at: str | None = Field(default=None, description="ISO instant, alternative to visit_date/visit_time")
    duration: int | None = Field(default=None, description="Minutes, 15-480")
    staff_id: str | None = None
    memo: str | None = None
    admin_memo: str | None = None
    operator_id: str | None = None


class RescheduleRequest(BaseModel):
    visit_date: str | None = None
    visit_time: str | None = None
    start_at: str | None = None
    duration: int | None = None
    staff_id: str | None = Field(default=None, description="Omit to keep, null or empty to unassign")
    operator_id: str | None = None


class StatusChange(BaseModel):
    status: str
    operator_id: str | None = None


class MemoUpdate(BaseModel):
    memo: str | None = None
    admin_memo: str | None = None
    operator_id: str | None = None


class AdminMemoResolution(BaseModel):
    resolved: bool
    operator_id: str | None = None


class PatientCancellation(BaseModel):
    operator_id: str | None = None


def build_store(settings: Settings) -> AppointmentStore:
    if settings.store_backend == "supabase":
        return SupabaseStore.from_settings(settings)
    logger.warning("using in-memory appointment store; data is lost on restart")
    return MemoryStore()


def build_manager(settings: Settings, store: Optional[AppointmentStore] = None) -> AppointmentManager:
    store = store or build_store(settings)
    zone = BusinessZone(settings.business_utc_offset_minutes)
    validator = SlotValidator(store, zone=zone, min_start_at=settings.booking_min_start)
    return AppointmentManager(
        store,
        clock=SystemClock.from_settings(settings),
        zone=zone,
        validator=validator,
        default_duration=settings.default_duration_minutes,
    )


def _manager(request: Request) -> AppointmentManager:
    return request.app.state.manager


def _resolve_start(zone: BusinessZone, visit_date: str | None, visit_time: str | None, start_at: str | None) -> Any:
    # Front-desk forms send wall-clock date and time; convert them here and nowhere else.
    if visit_date and visit_time:
        return zone.to_instant(visit_date, visit_time)
    if start_at:
        return start_at
    raise ValidationError("start_at", "visit_date and visit_time, or start_at, are required")


async def _scheduling_error_handler(request: Request, exc: SchedulingError) -> ORJSONResponse:
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 400)
    logger.info(
        "request rejected",
        extra={"path": request.url.path, "error": exc.kind, "status_code": status_code},
    )
    return ORJSONResponse(status_code=status_code, content=exc.to_dict())


router = APIRouter(prefix="/api")


@router.get("/health")
async def health(manager: AppointmentManager = Depends(_manager)) -> Dict[str, Any]:
    logger.debug("/api/health invoked")
    store_ok = await manager.store.health()
    status = "ok" if store_ok else "degraded"
    return {"status": status, "store": store_ok}


@router.get("/config")
async def get_config(request: Request, manager: AppointmentManager = Depends(_manager)) -> Dict[str, Any]:
    settings: Settings = request.app.state.settings
    return {
        "business_utc_offset_minutes": settings.business_utc_offset_minutes,
        "demo_mode": settings.demo_mode,
        "demo_date": settings.demo_fixed_date.isoformat() if settings.demo_mode else None,
        "today": manager.zone.today(manager.clock).isoformat(),
    }


@router.post("/appointments", status_code=201)
async def create_appointment(
    payload: AppointmentCreate,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    logger.info(
        "creating appointment",
        extra={"patient_id": payload.patient_id, "staff_id": payload.staff_id},
    )
    start_at = _resolve_start(manager.zone, payload.visit_date, payload.visit_time, payload.start_at)
    appointment = await manager.create(
        payload.patient_id,
        start_at,
        memo=payload.memo,
        staff_id=payload.staff_id,
        duration=payload.duration,
        admin_memo=payload.admin_memo,
        operator_id=payload.operator_id,
    )
    return appointment.to_dict()


@router.get("/appointments")
async def list_appointments(
    date: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    staff_id: Optional[str] = None,
    manager: AppointmentManager = Depends(_manager),
) -> List[Dict[str, Any]]:
    logger.info(
        "listing appointments",
        extra={"date": date, "start": start, "end": end, "staff_id": staff_id},
    )
    if start or end:
        if not (start and end):
            raise ValidationError("end" if start else "start", "start and end must be given together")
        appointments = await manager.list_for_range(start, end, staff_id=staff_id)
    else:
        appointments = await manager.list_for_day(date, staff_id=staff_id)
    return [appointment.to_dict() for appointment in appointments]


@router.get("/appointments/{appointment_id}")
async def get_appointment(appointment_id: str, manager: AppointmentManager = Depends(_manager)) -> Dict[str, Any]:
    appointment = await manager.get(appointment_id)
    return appointment.to_dict()


@router.patch("/appointments/{appointment_id}/schedule")
async def reschedule_appointment(
    appointment_id: str,
    payload: RescheduleRequest,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    start_at = _resolve_start(manager.zone, payload.visit_date, payload.visit_time, payload.start_at)
    staff_id = payload.staff_id if "staff_id" in payload.model_fields_set else UNCHANGED
    appointment = await manager.reschedule(
        appointment_id,
        start_at,
        new_duration=payload.duration,
        staff_id=staff_id,
        operator_id=payload.operator_id,
    )
    return appointment.to_dict()


@router.post("/appointments/{appointment_id}/status")
async def change_status(
    appointment_id: str,
    payload: StatusChange,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    appointment = await manager.transition(appointment_id, payload.status, operator_id=payload.operator_id)
    return appointment.to_dict()


@router.patch("/appointments/{appointment_id}/memos")
async def update_memos(
    appointment_id: str,
    payload: MemoUpdate,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    provided = payload.model_fields_set
    appointment = await manager.update_memos(
        appointment_id,
        memo=payload.memo if "memo" in provided else UNCHANGED,
        admin_memo=payload.admin_memo if "admin_memo" in provided else UNCHANGED,
        operator_id=payload.operator_id,
    )
    return appointment.to_dict()


@router.post("/appointments/{appointment_id}/admin-memo")
async def resolve_admin_memo(
    appointment_id: str,
    payload: AdminMemoResolution,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    appointment = await manager.set_admin_memo_resolution(
        appointment_id, payload.resolved, operator_id=payload.operator_id
    )
    return appointment.to_dict()


@router.post("/patients/{patient_id}/cancel-future")
async def cancel_future_appointments(
    patient_id: str,
    payload: PatientCancellation | None = None,
    manager: AppointmentManager = Depends(_manager),
) -> Dict[str, Any]:
    operator_id = payload.operator_id if payload else None
    cancelled = await manager.cancel_future_for_patient(patient_id, operator_id=operator_id)
    return {"cancelled": [appointment.to_dict() for appointment in cancelled]}


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[AppointmentManager] = None,
) -> FastAPI:
    settings = settings or get_settings()
    manager = manager or build_manager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("API shutdown requested; closing appointment store")
        await manager.store.close()

    app = FastAPI(
        title="Front Desk Scheduling",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.manager = manager

    origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SchedulingError, _scheduling_error_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("frontdesk.api:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
