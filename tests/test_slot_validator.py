import asyncio
from datetime import datetime, timezone

import pytest

from frontdesk.errors import ValidationError
from frontdesk.models import BookingRequest
from frontdesk.services import SlotValidator

from .conftest import jst


def _validate(validator, **overrides):
    request = BookingRequest(patient_id="p1", start_at=jst(2026, 1, 15, 10), duration=60)
    for key, value in overrides.items():
        setattr(request, key, value)
    return asyncio.run(validator.validate(request))


def _field_of(validator, **overrides):
    with pytest.raises(ValidationError) as excinfo:
        _validate(validator, **overrides)
    return excinfo.value.field


@pytest.fixture
def validator(store, zone):
    return SlotValidator(store, zone=zone)


def test_valid_request_returns_utc_start(validator):
    assert _validate(validator) == datetime(2026, 1, 15, 1, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("patient_id", [None, "", "   ", "nobody", "gone"])
def test_patient_must_exist(validator, patient_id):
    assert _field_of(validator, patient_id=patient_id) == "patient_id"


@pytest.mark.parametrize("duration", [15, 480])
def test_duration_bounds_are_inclusive(validator, duration):
    _validate(validator, duration=duration)


@pytest.mark.parametrize("duration", [0, 14, 481, -30, "60", 60.0, True, None])
def test_duration_outside_bounds_fails(validator, duration):
    assert _field_of(validator, duration=duration) == "duration"


def test_checks_stop_at_first_failure(validator):
    assert _field_of(validator, patient_id="nobody", duration=5, start_at="garbage") == "patient_id"
    assert _field_of(validator, duration=5, start_at="garbage") == "duration"


@pytest.mark.parametrize("start_at", ["garbage", datetime(2026, 1, 15, 10, 0), None])
def test_start_must_be_an_instant(validator, start_at):
    assert _field_of(validator, start_at=start_at) == "start_at"


def test_past_dates_allowed_without_horizon(validator):
    _validate(validator, start_at=jst(2020, 1, 1, 10))


def test_minimum_horizon(store, zone):
    validator = SlotValidator(store, zone=zone, min_start_at=jst(2026, 1, 1))
    assert _field_of(validator, start_at=jst(2025, 12, 31, 23, 59)) == "start_at"
    _validate(validator, start_at=jst(2026, 1, 1))
