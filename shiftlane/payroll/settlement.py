"""Settlement: from a completed shift to an invoice and a payout.

The venue confirms the hours actually worked (optionally adjusted), rates
the worker, and an invoice is produced from those final times. The payout
itself happens outside the engine; the system reports it back through
:meth:`Settlement.settle_payout`.
"""

import logging
from datetime import datetime, time
from typing import Optional, Tuple, Union

from shiftlane.payroll.costs import CostEngine, Quote
from shiftlane.payroll.duration import compute_billable_hours, resolve_window, snap_to_increment
from shiftlane.payroll.invoice import InMemoryInvoiceLedger, Invoice, InvoiceLedger, build_shift_invoice
from shiftlane.shifts.lifecycle import ShiftLifecycle, validate_rating
from shiftlane.shifts.models import Actor, Shift, ShiftEdge

logger = logging.getLogger(__name__)

ClockInput = Union[time, datetime]


class Settlement:
    """Finalizes completed shifts and records payouts and worker reviews."""

    def __init__(
        self,
        lifecycle: ShiftLifecycle,
        cost_engine: Optional[CostEngine] = None,
        invoices: Optional[InvoiceLedger] = None,
    ):
        self.lifecycle = lifecycle
        self.costs = cost_engine or CostEngine(lifecycle.config)
        self.invoices = invoices if invoices is not None else InMemoryInvoiceLedger()

    def _final_window(
        self, shift: Shift, start: ClockInput, end: ClockInput, snap: bool
    ) -> Tuple[datetime, datetime]:
        if isinstance(start, datetime) and isinstance(end, datetime):
            final_start, final_end = start, end
        elif isinstance(start, time) and isinstance(end, time):
            # Clock times are read on the shift's own calendar day
            tz = shift.start.tzinfo
            final_start, final_end = resolve_window(shift.start.date(), start, end, tz)
        else:
            raise TypeError("final start and end must both be times or both be datetimes")

        if snap:
            increment = self.lifecycle.config.time_increment_minutes
            final_start = snap_to_increment(final_start, increment)
            final_end = snap_to_increment(final_end, increment)
        return final_start, final_end

    def finalize(
        self,
        shift_id: str,
        venue: Actor,
        final_start: Optional[ClockInput] = None,
        final_end: Optional[ClockInput] = None,
        final_break_minutes: Optional[int] = None,
        *,
        rating: int,
        review_text: str = "",
        promo_code: Optional[str] = None,
        snap: bool = False,
    ) -> Tuple[Shift, Invoice]:
        """Settle a completed shift on its final times.

        Omitted final values default to the scheduled ones. With ``snap``
        the final times are rounded to the nearest increment first.

        Returns:
            The shift (now ``pending_payment``) and its invoice.
        """
        shift = self.lifecycle.check(shift_id, ShiftEdge.FINALIZE, venue)
        validate_rating(rating)
        config = self.lifecycle.config

        start, end = self._final_window(
            shift,
            final_start if final_start is not None else shift.start,
            final_end if final_end is not None else shift.end,
            snap,
        )
        break_minutes = shift.break_minutes if final_break_minutes is None else final_break_minutes
        hours = compute_billable_hours(
            start,
            end,
            break_minutes,
            increment=config.time_increment_minutes,
            max_hours=config.max_shift_hours,
        )

        if promo_code:
            quote = self.costs.quote(hours, shift.hourly_rate, promo_code, consume_promo=False)
        else:
            quote = self.costs.requote(hours, shift.hourly_rate, shift.promo_code)

        invoice = build_shift_invoice(
            venue_id=shift.venue_id,
            worker_id=shift.worker_id,
            shift_id=shift.id,
            shift_date=start,
            role=shift.role,
            quote=quote,
            currency=config.currency,
        )

        # The invoice is handed off only once the shift points at it
        if promo_code:
            self.costs.consume_promo_code(promo_code, used_by=venue.id)
        try:
            shift = self.lifecycle.finalize(
                shift.id,
                venue,
                final_start=start,
                final_end=end,
                final_break_minutes=break_minutes,
                quote=quote,
                invoice_id=invoice.id,
                rating=rating,
                review_text=review_text,
            )
        except Exception:
            if promo_code:
                self.costs.release_promo_code(promo_code)
            raise

        self.invoices.save_invoice(invoice)
        logger.info(
            "Invoice %s for shift %s: %.2f hours, total %s",
            invoice.id,
            shift.id,
            hours,
            quote.display()["total_cost"],
        )
        return shift, invoice

    def quote_final(
        self,
        shift_id: str,
        final_start: ClockInput,
        final_end: ClockInput,
        final_break_minutes: int,
        snap: bool = False,
    ) -> Quote:
        """Preview the settled cost for adjusted times without finalizing."""
        shift = self.lifecycle.get_shift(shift_id)
        start, end = self._final_window(shift, final_start, final_end, snap)
        config = self.lifecycle.config
        hours = compute_billable_hours(
            start,
            end,
            final_break_minutes,
            increment=config.time_increment_minutes,
            max_hours=config.max_shift_hours,
        )
        return self.costs.requote(hours, shift.hourly_rate, shift.promo_code)

    def settle_payout(self, shift_id: str, system: Actor, request_review: bool = True) -> Shift:
        return self.lifecycle.settle_payout(shift_id, system, request_review=request_review)

    def submit_worker_review(
        self, shift_id: str, worker: Actor, rating: int, comment: str = ""
    ) -> Shift:
        return self.lifecycle.submit_worker_review(shift_id, worker, rating, comment)

    def invoice_for(self, shift_id: str) -> Optional[Invoice]:
        shift = self.lifecycle.get_shift(shift_id)
        if not shift.invoice_id:
            return None
        return self.invoices.get_invoice(shift.invoice_id)
