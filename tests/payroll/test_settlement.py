"""Tests for settling completed shifts."""

from datetime import datetime, time, timedelta, timezone

import pytest

from shiftlane.errors import (
    InvalidTimeGranularity,
    InvalidTransition,
    PromoCodeInvalid,
    UnauthorizedTransition,
    VersionConflictError,
)
from shiftlane.notifications import NotificationType
from shiftlane.shifts.models import ShiftStatus

SHIFT_DAY = datetime(2025, 3, 2, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return SHIFT_DAY + timedelta(hours=hour, minutes=minute)


@pytest.fixture
def completed_shift(lifecycle, confirmed_shift, system, clock):
    clock.set(_at(18))
    return lifecycle.complete(confirmed_shift.id, system)


class TestFinalize:
    """Tests for Settlement.finalize."""

    def test_scheduled_times_by_default(self, settlement, completed_shift, venue, invoices, notifier):
        shift, invoice = settlement.finalize(completed_shift.id, venue, rating=5, review_text="reliable")

        assert shift.status == ShiftStatus.PENDING_PAYMENT.value
        assert shift.final_hours == 7.5
        assert shift.invoice_id == invoice.id
        assert shift.venue_review["rating"] == 5
        assert invoice.total_amount == pytest.approx(210.0)
        assert invoice.worker_id == "worker-a"
        assert invoice.currency == "NZD"
        assert invoices.get_invoice(invoice.id) is invoice
        assert notifier.for_recipient("worker-a")[-1].type == NotificationType.INVOICE_GENERATED

    def test_adjusted_clock_times(self, settlement, completed_shift, venue):
        """Worker stayed an hour late: 09:00-18:00 less 30 minutes is 8.5 hours."""
        shift, invoice = settlement.finalize(
            completed_shift.id, venue, time(9, 0), time(18, 0), 30, rating=4
        )
        assert shift.final_end == _at(18)
        assert shift.final_hours == 8.5
        assert invoice.total_amount == pytest.approx(238.0)
        # Scheduled times are left as they were
        assert shift.end == _at(17)

    def test_snap_to_increment(self, settlement, completed_shift, venue):
        shift, invoice = settlement.finalize(
            completed_shift.id, venue, _at(9, 7), _at(17, 8), 30, rating=5, snap=True
        )
        assert (shift.final_start, shift.final_end) == (_at(9), _at(17, 15))
        assert shift.final_hours == 7.75
        assert invoice.total_amount == pytest.approx(217.0)

    def test_off_grid_without_snap(self, settlement, lifecycle, completed_shift, venue, invoices):
        with pytest.raises(InvalidTimeGranularity):
            settlement.finalize(completed_shift.id, venue, _at(9, 7), _at(17), 30, rating=5)
        assert lifecycle.get_shift(completed_shift.id).status == ShiftStatus.COMPLETED.value
        assert invoices.list_invoices() == []

    def test_bad_rating_saves_no_invoice(self, settlement, completed_shift, venue, invoices):
        with pytest.raises(ValueError, match="1 to 5"):
            settlement.finalize(completed_shift.id, venue, rating=0)
        assert invoices.list_invoices() == []

    def test_lost_write_leaves_no_invoice_and_keeps_promo(
        self, settlement, lifecycle, storage, completed_shift, venue, invoices, promo_codes,
        monkeypatch,
    ):
        def concurrent_writer(shift, expected_version=None):
            raise VersionConflictError("shifts", shift.id, shift.version, shift.version + 1)

        monkeypatch.setattr(storage, "update_shift", concurrent_writer)
        with pytest.raises(VersionConflictError):
            settlement.finalize(completed_shift.id, venue, rating=5, promo_code="SAVE10")
        monkeypatch.undo()

        assert invoices.list_invoices() == []
        assert promo_codes.get_code("SAVE10").used is False
        assert lifecycle.get_shift(completed_shift.id).status == ShiftStatus.COMPLETED.value

        shift, invoice = settlement.finalize(completed_shift.id, venue, rating=5, promo_code="SAVE10")
        assert [i.id for i in invoices.list_invoices()] == [invoice.id]
        assert shift.invoice_id == invoice.id
        assert promo_codes.get_code("SAVE10").used is True

    def test_used_promo_rejected_before_any_write(
        self, settlement, lifecycle, completed_shift, venue, invoices, promo_codes
    ):
        promo_codes.mark_used("SAVE10", used_by="venue-9")
        with pytest.raises(PromoCodeInvalid, match="already been used"):
            settlement.finalize(completed_shift.id, venue, rating=5, promo_code="SAVE10")
        assert invoices.list_invoices() == []
        assert lifecycle.get_shift(completed_shift.id).status == ShiftStatus.COMPLETED.value

    def test_mixed_time_inputs(self, settlement, completed_shift, venue):
        with pytest.raises(TypeError):
            settlement.finalize(completed_shift.id, venue, time(9, 0), _at(17), 30, rating=5)

    def test_promo_at_settlement(self, settlement, completed_shift, venue, promo_codes):
        shift, invoice = settlement.finalize(completed_shift.id, venue, rating=5, promo_code="SAVE10")
        assert invoice.discount == pytest.approx(2.25)
        assert invoice.total_amount == pytest.approx(207.75)
        assert promo_codes.get_code("SAVE10").used is True

    def test_posting_promo_carries_through(
        self, coordinator, lifecycle, settlement, venue, worker_a, system, clock, make_draft
    ):
        shift = coordinator.post_shift(venue, make_draft(), promo_code="FREESHIFT").shift
        lifecycle.apply(shift.id, worker_a)
        coordinator.offer_single(shift.id, venue, worker_a.id)
        lifecycle.accept_offer(shift.id, worker_a)
        clock.set(_at(18))
        lifecycle.complete(shift.id, system)

        _, invoice = settlement.finalize(shift.id, venue, rating=5)

        assert invoice.service_fee == pytest.approx(22.5)
        assert invoice.total_amount == pytest.approx(187.5)

    def test_only_after_completion(self, settlement, confirmed_shift, venue):
        with pytest.raises(InvalidTransition):
            settlement.finalize(confirmed_shift.id, venue, rating=5)

    def test_only_the_posting_venue(self, settlement, completed_shift, other_venue):
        with pytest.raises(UnauthorizedTransition):
            settlement.finalize(completed_shift.id, other_venue, rating=5)

    def test_finalize_once(self, settlement, completed_shift, venue):
        settlement.finalize(completed_shift.id, venue, rating=5)
        with pytest.raises(InvalidTransition):
            settlement.finalize(completed_shift.id, venue, rating=5)


class TestQuoteFinal:
    """Tests for previewing the settled cost."""

    def test_preview_changes_nothing(self, settlement, lifecycle, completed_shift):
        quote = settlement.quote_final(completed_shift.id, time(9, 0), time(18, 0), 30)
        assert quote.total_cost == pytest.approx(238.0)
        assert lifecycle.get_shift(completed_shift.id).status == ShiftStatus.COMPLETED.value
        assert settlement.invoice_for(completed_shift.id) is None


class TestPayoutAndReview:
    """Tests for the steps after finalization."""

    def test_full_settlement(self, settlement, completed_shift, venue, worker_a, system):
        _, invoice = settlement.finalize(completed_shift.id, venue, rating=5)

        shift = settlement.settle_payout(completed_shift.id, system)
        assert shift.status == ShiftStatus.PENDING_WORKER_REVIEW.value

        shift = settlement.submit_worker_review(completed_shift.id, worker_a, 4, "busy but fair")
        assert shift.status == ShiftStatus.PAID.value
        assert shift.worker_review["rating"] == 4
        assert settlement.invoice_for(shift.id).id == invoice.id

    def test_paid_is_terminal(self, settlement, completed_shift, venue, worker_a, system):
        settlement.finalize(completed_shift.id, venue, rating=5)
        settlement.settle_payout(completed_shift.id, system, request_review=False)
        with pytest.raises(InvalidTransition):
            settlement.submit_worker_review(completed_shift.id, worker_a, 5)

    def test_only_system_settles(self, settlement, completed_shift, venue):
        settlement.finalize(completed_shift.id, venue, rating=5)
        with pytest.raises(UnauthorizedTransition):
            settlement.settle_payout(completed_shift.id, venue)
