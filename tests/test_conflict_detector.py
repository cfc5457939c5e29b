import asyncio

import pytest

from frontdesk.models import CANCELLED, COMPLETED, Appointment, end_for
from frontdesk.services import ConflictDetector, MemoryStore, overlaps

from .conftest import jst


def _booking(appointment_id, staff_id, start_at, duration=60, status="scheduled"):
    return Appointment(
        id=appointment_id,
        patient_id="p1",
        staff_id=staff_id,
        start_at=start_at,
        end_at=end_for(start_at, duration),
        duration=duration,
        status=status,
    )


@pytest.fixture
def detector():
    store = MemoryStore(
        appointments=[
            _booking("a", "s1", jst(2026, 1, 15, 10)),
            _booking("old", "s1", jst(2026, 1, 15, 13), status=CANCELLED),
            _booking("done", "s1", jst(2026, 1, 15, 14), status=COMPLETED),
            _booking("b", "s2", jst(2026, 1, 15, 15)),
        ]
    )
    return ConflictDetector(store)


def _has(detector, *args, **kwargs):
    return asyncio.run(detector.has_conflict(*args, **kwargs))


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((10, 11), (11, 12), False),
        ((11, 12), (10, 11), False),
        ((10, 11), (10, 11), True),
        ((10, 12), (10.5, 11), True),
        ((10, 11), (10.5, 11.5), True),
        ((10, 11), (12, 13), False),
    ],
)
def test_half_open_overlap(a, b, expected):
    def at(hour):
        return jst(2026, 1, 15, int(hour), int((hour % 1) * 60))

    assert overlaps(at(a[0]), at(a[1]), at(b[0]), at(b[1])) is expected


def test_touching_end_is_not_a_conflict(detector):
    assert not _has(detector, "s1", jst(2026, 1, 15, 11), 30)
    assert not _has(detector, "s1", jst(2026, 1, 15, 9), 60)


def test_overlap_with_active_booking(detector):
    assert _has(detector, "s1", jst(2026, 1, 15, 10, 30), 30)
    found = asyncio.run(detector.find_conflict("s1", jst(2026, 1, 15, 9, 30), 60))
    assert found.id == "a"


def test_inactive_bookings_do_not_block(detector):
    assert not _has(detector, "s1", jst(2026, 1, 15, 13), 120)


def test_other_staff_do_not_block(detector):
    assert not _has(detector, "s2", jst(2026, 1, 15, 10), 60)


def test_excluded_appointment_is_skipped(detector):
    assert not _has(detector, "s1", jst(2026, 1, 15, 10, 30), 60, exclude_appointment_id="a")


def test_unassigned_never_conflicts_and_never_queries_store():
    detector = ConflictDetector(store=None)
    assert not _has(detector, None, jst(2026, 1, 15, 10), 60)
