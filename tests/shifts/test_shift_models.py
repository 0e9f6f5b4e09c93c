"""Tests for shift data models."""

from datetime import datetime, timedelta, timezone

import pytest

from shiftlane.payroll.costs import CostEngine
from shiftlane.shifts.models import (
    Actor,
    ActorRole,
    ApplicationStatus,
    PendingChange,
    Shift,
    ShiftApplication,
    ShiftStatus,
    VALID_SHIFT_TRANSITIONS,
    normalize_status,
)

START = datetime(2025, 3, 2, 9, 0, tzinfo=timezone.utc)


def _shift(**overrides) -> Shift:
    fields = dict(
        id="shift-1",
        venue_id="venue-1",
        role="bartender",
        start=START,
        end=START + timedelta(hours=8),
        hourly_rate=25.0,
        break_minutes=30,
    )
    fields.update(overrides)
    return Shift(**fields)


class TestShiftStatus:
    """Tests for status values and the transition table."""

    def test_filled_is_read_as_confirmed(self):
        assert normalize_status("filled") == "confirmed"
        assert _shift(status="filled").status == ShiftStatus.CONFIRMED.value

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Invalid status"):
            _shift(status="archived")

    def test_terminal_statuses_have_no_exits(self):
        assert VALID_SHIFT_TRANSITIONS[ShiftStatus.PAID] == set()
        assert VALID_SHIFT_TRANSITIONS[ShiftStatus.CANCELLED] == set()

    def test_can_transition_to(self):
        shift = _shift(status=ShiftStatus.CONFIRMED)
        assert shift.can_transition_to(ShiftStatus.PENDING_CHANGES)
        assert not shift.can_transition_to(ShiftStatus.PAID)


class TestShiftValidation:
    """Tests for Shift.__post_init__."""

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"role": " "}, "Role"),
            ({"venue_id": ""}, "venue"),
            ({"hourly_rate": 0}, "Hourly rate"),
            ({"end": START}, "after start"),
            ({"end": START + timedelta(hours=25)}, "24 hours"),
            ({"break_minutes": -5}, "negative"),
            ({"break_minutes": 600}, "longer than the shift"),
            ({"applicant_ids": ["w1", "w1"]}, "duplicates"),
        ],
    )
    def test_rejects_bad_fields(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            _shift(**overrides)

    def test_naive_times_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            _shift(start=datetime(2025, 3, 2, 9, 0), end=datetime(2025, 3, 2, 17, 0))


class TestShiftDerivedValues:
    """Tests for Shift properties."""

    def test_billable_hours(self):
        assert _shift().billable_hours == 7.5

    def test_holder_of_an_offer(self):
        shift = _shift(status=ShiftStatus.OFFERED_TO_WORKER, proposed_worker_id="w1")
        assert shift.has_outstanding_offer
        assert shift.holder_id == "w1"

    def test_holder_of_an_assignment(self):
        shift = _shift(status=ShiftStatus.PENDING_CHANGES, worker_id="w2")
        assert shift.holder_id == "w2"
        assert not shift.has_outstanding_offer

    def test_no_holder_when_posted(self):
        assert _shift().holder_id is None
        assert _shift().is_open

    def test_apply_quote_writes_all_figures(self):
        shift = _shift()
        shift.apply_quote(CostEngine().quote(7.5, 30.0))
        assert shift.hourly_rate == 30.0
        assert shift.base_pay == pytest.approx(225.0)
        assert shift.service_fee == pytest.approx(27.0)
        assert shift.total_cost == pytest.approx(252.0)


class TestSerialization:
    """Tests for to_dict/from_dict."""

    def test_shift_round_trip(self):
        shift = _shift(
            status=ShiftStatus.PENDING_CHANGES,
            worker_id="w1",
            applicant_ids=["w1", "w2"],
            block_id="block-1",
            pending_change=PendingChange(
                start=START + timedelta(hours=1),
                end=START + timedelta(hours=9),
                break_minutes=15,
                requested_by="venue-1",
            ),
            version=4,
        )
        restored = Shift.from_dict(shift.to_dict())
        assert restored == shift

    def test_pending_change_hours(self):
        change = PendingChange(start=START, end=START + timedelta(hours=6), break_minutes=30)
        assert change.billable_hours == 5.5

    def test_overnight_pending_change_hours(self):
        """22:00 to 04:00 the next morning less 30 minutes is 5.5 hours."""
        late = START.replace(hour=22)
        change = PendingChange(start=late, end=late + timedelta(hours=6), break_minutes=30)
        assert change.billable_hours == 5.5

    def test_pending_change_hours_across_offsets(self):
        """Instants are compared in UTC, whatever offset each end carries."""
        nz = timezone(timedelta(hours=13))
        change = PendingChange(
            start=START, end=(START + timedelta(hours=4)).astimezone(nz), break_minutes=0
        )
        assert change.billable_hours == 4.0

    def test_application_round_trip(self):
        app = ShiftApplication(
            id="app-1",
            shift_id="shift-1",
            worker_id="w1",
            status=ApplicationStatus.OFFERED,
            applied_at=START,
        )
        restored = ShiftApplication.from_dict(app.to_dict())
        assert restored == app
        assert restored.is_actionable
        assert not restored.is_pending

    def test_application_status_validated(self):
        with pytest.raises(ValueError, match="Invalid status"):
            ShiftApplication(id="a", shift_id="s", worker_id="w", status="maybe")


class TestActor:
    """Tests for the Actor value object."""

    def test_constructors(self):
        assert Actor.venue("v1").role == ActorRole.VENUE
        assert Actor.worker("w1").role == ActorRole.WORKER
        assert Actor.system().id == "system"

    def test_role_coerced_from_string(self):
        assert Actor("w1", "worker").role == ActorRole.WORKER

    def test_empty_id(self):
        with pytest.raises(ValueError):
            Actor.worker(" ")
