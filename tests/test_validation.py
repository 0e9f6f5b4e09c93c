"""Tests for JSON payload validation."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from shiftlane.validation import (
    parse_datetime,
    validate_change_request,
    validate_payload,
    validate_shift_draft,
)


def _draft(**overrides):
    payload = {
        "role": "bartender",
        "date": "2025-03-02",
        "start_time": "09:00",
        "end_time": "17:00",
        "hourly_rate": 25,
        "break_minutes": 30,
    }
    payload.update(overrides)
    return payload


class TestShiftDraft:
    """Tests for validate_shift_draft."""

    def test_clock_form(self):
        draft = validate_shift_draft(_draft(location="Main bar", requirements=["RSA"]))
        assert draft.start == datetime(2025, 3, 2, 9, 0, tzinfo=timezone.utc)
        assert draft.end == datetime(2025, 3, 2, 17, 0, tzinfo=timezone.utc)
        assert draft.hourly_rate == 25.0
        assert draft.requirements == ["RSA"]

    def test_overnight_clock_form(self):
        draft = validate_shift_draft(_draft(start_time="22:00", end_time="06:00"))
        assert draft.end - draft.start == timedelta(hours=8)

    def test_utc_timezone_name(self):
        draft = validate_shift_draft(_draft(timezone="utc"))
        assert draft.start.utcoffset() == timedelta(0)

    def test_instant_form(self):
        draft = validate_shift_draft(
            {
                "role": "chef",
                "start": "2025-03-02T09:00:00Z",
                "end": "2025-03-02T15:00:00Z",
                "hourly_rate": 31.5,
            }
        )
        assert draft.break_minutes == 0
        assert draft.end.hour == 15

    def test_role_is_stripped(self):
        assert validate_shift_draft(_draft(role="  barista ")).role == "barista"

    @pytest.mark.parametrize(
        "overrides,path",
        [
            ({"hourly_rate": 0}, "hourly_rate"),
            ({"break_minutes": -15}, "break_minutes"),
            ({"start_time": "9am"}, "start_time"),
            ({"surprise": True}, "(root)"),
            ({"role": ""}, "role"),
        ],
    )
    def test_schema_errors_name_the_path(self, overrides, path):
        with pytest.raises(ValueError, match=rf"failed at {re.escape(path)}"):
            validate_shift_draft(_draft(**overrides))

    def test_window_required(self):
        with pytest.raises(ValueError, match="Schema validation failed"):
            validate_shift_draft({"role": "chef", "hourly_rate": 20})

    def test_unknown_timezone(self):
        with pytest.raises(ValueError, match="Unknown timezone"):
            validate_shift_draft(_draft(timezone="Mars/Olympus"))

    def test_not_an_object(self):
        with pytest.raises(ValueError, match="must be an object"):
            validate_shift_draft(["role"])


class TestChangeRequest:
    """Tests for validate_change_request."""

    def test_valid(self):
        start, end, brk = validate_change_request(
            {"start": "2025-03-02T10:00:00+13:00", "end": "2025-03-02T18:00:00+13:00", "break_minutes": 45}
        )
        assert end - start == timedelta(hours=8)
        assert brk == 45

    def test_break_defaults_to_zero(self):
        _, _, brk = validate_change_request(
            {"start": "2025-03-02T10:00:00Z", "end": "2025-03-02T18:00:00Z"}
        )
        assert brk == 0

    def test_missing_end(self):
        with pytest.raises(ValueError, match="'end' is a required property"):
            validate_payload("change_request", {"start": "2025-03-02T10:00:00Z"})


class TestParseDatetime:
    """Tests for parse_datetime."""

    def test_z_suffix(self):
        assert parse_datetime("2025-03-02T10:00:00Z", "start").tzinfo is not None

    def test_offset_required(self):
        with pytest.raises(ValueError, match="UTC offset"):
            parse_datetime("2025-03-02T10:00:00", "start")

    def test_garbage(self):
        with pytest.raises(ValueError, match="not an ISO-8601"):
            parse_datetime("tomorrow", "start")
