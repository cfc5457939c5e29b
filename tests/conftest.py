from datetime import date, datetime, timedelta, timezone

import pytest

from frontdesk.clock import FixedClock
from frontdesk.models import Patient
from frontdesk.services import AppointmentManager, BusinessZone, MemoryStore
from frontdesk.settings import Settings

JST = timezone(timedelta(hours=9))


def jst(year, month, day, hour=0, minute=0, second=0, microsecond=0):
    """Business-zone wall clock as an aware datetime."""
    return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=JST)


@pytest.fixture
def zone():
    return BusinessZone()


@pytest.fixture
def clock():
    return FixedClock(jst(2026, 1, 15, 9, 0))


@pytest.fixture
def store():
    return MemoryStore(
        patients=[
            Patient(id="p1", name="Yamashita Satomi"),
            Patient(id="p2", name="Tanaka Ken"),
            Patient(id="gone", name="Removed", deleted_at=datetime(2025, 12, 1, tzinfo=timezone.utc)),
        ]
    )


@pytest.fixture
def manager(store, clock, zone):
    return AppointmentManager(store, clock=clock, zone=zone)


@pytest.fixture
def settings():
    return Settings(
        store_backend="memory",
        supabase_url=None,
        supabase_key=None,
        store_timeout=5.0,
        business_utc_offset_minutes=540,
        demo_mode=False,
        demo_fixed_date=date(2026, 1, 15),
        default_duration_minutes=60,
        booking_min_start=None,
        cors_origins=["*"],
    )
