from datetime import date, datetime, timedelta, timezone

import pytest

from clinic_scheduler.errors import ValidationError
from clinic_scheduler.models import Appointment
from clinic_scheduler.normalize import extract_party, hydrate_dates, normalize_id, parse_instant, to_wire


@pytest.mark.parametrize("value", ["X", {"_id": "X"}, {"id": "X"}, {"value": "X"}, {"_id": {"id": "X"}}, " X "])
def test_normalize_id_shapes(value):
    assert normalize_id(value) == "X"


@pytest.mark.parametrize("value", [None, "", {}, {"name": "no id here"}, True])
def test_normalize_id_missing(value):
    assert normalize_id(value) is None


def test_normalize_id_prefers_underscore_id_and_accepts_ints():
    assert normalize_id({"_id": "mongo", "id": "virtual"}) == "mongo"
    assert normalize_id(42) == "42"
    assert normalize_id(Appointment(id="appt-1")) == "appt-1"


def test_parse_instant_variants():
    expected = datetime(2030, 5, 14, 9, 0, tzinfo=timezone.utc)
    assert parse_instant("2030-05-14T09:00:00.000Z") == expected
    assert parse_instant("2030-05-14T11:00:00+02:00") == expected
    assert parse_instant(datetime(2030, 5, 14, 9, 0)) == expected
    assert parse_instant(int(expected.timestamp() * 1000)) == expected
    assert parse_instant(date(2030, 5, 14)) == expected - timedelta(hours=9)


@pytest.mark.parametrize("bad", ["not a date", "", None, "2030-13-40"])
def test_parse_instant_rejects_garbage(bad):
    with pytest.raises(ValidationError) as exc:
        parse_instant(bad, "startTime")
    assert exc.value.fields == ["startTime"]


def test_wire_format_is_lossless_to_the_second():
    original = datetime(2030, 5, 14, 9, 15, 42, 123456, tzinfo=timezone.utc)
    wire = to_wire(original)
    assert wire == "2030-05-14T09:15:42.123Z"
    assert parse_instant(wire).replace(microsecond=0) == original.replace(microsecond=0)


def test_hydrate_dates_nulls_invalid_values():
    out = hydrate_dates({"_id": "a", "startTime": "2030-05-14T09:00:00Z", "endTime": "garbage"})
    assert out["startTime"] == datetime(2030, 5, 14, 9, tzinfo=timezone.utc)
    assert out["endTime"] is None


def test_extract_party_prefers_explicit_names():
    payload = {
        "patientName": "Given Name",
        "patientId": {"_id": "p", "name": "Embedded"},
        "doctor": {"firstName": "Sam", "lastName": "Reyes", "specialization": "Ortho"},
    }
    assert extract_party(payload, "patient")["name"] == "Given Name"
    assert extract_party(payload, "doctor") == {"name": "Sam Reyes", "specialization": "Ortho"}
