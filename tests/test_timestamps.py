"""Tests for @timestamp computation."""

from datetime import datetime, timezone

from es_shipper.timestamps import compute_timestamp, now_iso, to_iso


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_iso_string_time():
    assert compute_timestamp({"time": "2024-01-01T00:00:00.000Z"}) == "2024-01-01T00:00:00.000Z"


def test_offset_string_is_converted_to_utc():
    assert compute_timestamp({"time": "2024-01-01T02:30:00+02:00"}) == "2024-01-01T00:30:00.000Z"


def test_naive_string_is_utc():
    assert compute_timestamp({"time": "2024-06-15T12:00:00"}) == "2024-06-15T12:00:00.000Z"


def test_epoch_millis():
    assert compute_timestamp({"time": 1704067200123}) == "2024-01-01T00:00:00.123Z"
    assert compute_timestamp({"time": 0}) == "1970-01-01T00:00:00.000Z"


def test_unusable_time_falls_back_to_now():
    for value in ({"time": ""}, {"time": -5}, {"time": True}, {"time": None},
                  {"time": "not a date"}, {}, "scalar", 42):
        before = datetime.now(timezone.utc)
        result = _parse(compute_timestamp(value))
        after = datetime.now(timezone.utc)
        assert before.replace(microsecond=before.microsecond // 1000 * 1000) <= result <= after


def test_to_iso_format():
    dt = datetime(2024, 3, 5, 10, 0, 0, 456789, tzinfo=timezone.utc)
    assert to_iso(dt) == "2024-03-05T10:00:00.456Z"


def test_now_iso_shape():
    value = now_iso()
    assert value.endswith("Z")
    assert len(value) == len("2024-01-01T00:00:00.000Z")


def test_time_shifted_out_of_range_falls_back_to_now():
    for value in ("0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00"):
        before = datetime.now(timezone.utc).replace(microsecond=0)
        result = _parse(compute_timestamp({"time": value}))
        assert before <= result <= datetime.now(timezone.utc)


def test_epoch_millis_too_large_falls_back_to_now():
    before = datetime.now(timezone.utc).replace(microsecond=0)
    result = _parse(compute_timestamp({"time": 10**20}))
    assert before <= result <= datetime.now(timezone.utc)
