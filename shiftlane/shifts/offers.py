"""Offer coordination: posting, offers and change requests with their quotes.

OfferCoordinator sits on top of ShiftLifecycle and CostEngine. It prices
drafts, locks the cost shown with each offer, and re-prices a shift when an
accepted change moves its hours. Status changes still go through the
lifecycle.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from shiftlane.errors import ConflictingOffer, ShiftNotFound, UnauthorizedTransition
from shiftlane.payroll.costs import CostEngine, Quote, sum_quotes
from shiftlane.shifts.lifecycle import ShiftLifecycle, check_block_invariants
from shiftlane.shifts.models import Actor, ActorRole, Shift, ShiftDraft, ShiftStatus
from shiftlane.validation import validate_change_request, validate_shift_draft

logger = logging.getLogger(__name__)

DraftInput = Union[ShiftDraft, Mapping[str, Any]]

# (venue_id, role) -> the venue's current hourly rate for that role
RateLookup = Callable[[str, str], Optional[float]]


@dataclass
class OfferResult:
    """Shifts touched by an offer operation and the cost locked with them."""

    shifts: List[Shift] = field(default_factory=list)
    quote: Optional[Quote] = None

    @property
    def shift(self) -> Optional[Shift]:
        return self.shifts[0] if self.shifts else None

    def to_dict(self) -> dict:
        return {
            "shifts": [s.to_dict() for s in self.shifts],
            "quote": self.quote.to_dict() if self.quote else None,
        }


def _as_draft(draft: DraftInput) -> ShiftDraft:
    if isinstance(draft, ShiftDraft):
        return draft
    if isinstance(draft, Mapping):
        return validate_shift_draft(dict(draft))
    raise TypeError(f"Shift draft must be a ShiftDraft or mapping, got {type(draft).__name__}")


def _require_venue(actor: Actor) -> None:
    if actor.role != ActorRole.VENUE:
        raise UnauthorizedTransition(
            f"Only a venue can post or offer shifts (actor {actor.role.value} {actor.id})",
            actor_id=actor.id,
        )


class OfferCoordinator:
    """Coordinates postings and offers for single shifts and blocks.

    Args:
        lifecycle: The shift state machine.
        cost_engine: Pricing. Defaults to one built from the lifecycle config.
        rate_lookup: Current venue rate per role, used when re-pricing offers
            on standalone shifts. Block members keep their posted rate.
    """

    def __init__(
        self,
        lifecycle: ShiftLifecycle,
        cost_engine: Optional[CostEngine] = None,
        rate_lookup: Optional[RateLookup] = None,
    ):
        self.lifecycle = lifecycle
        self.costs = cost_engine or CostEngine(lifecycle.config)
        self.rate_lookup = rate_lookup

    # =========================================================================
    # Pricing
    # =========================================================================

    def preview(self, draft: DraftInput, promo_code: Optional[str] = None) -> Quote:
        """Projected cost for a draft; the promo code is validated, not consumed."""
        draft = _as_draft(draft)
        return self._quote_draft(draft, promo_code, consume=False, used_by=None)

    def _quote_draft(
        self,
        draft: ShiftDraft,
        promo_code: Optional[str],
        consume: bool,
        used_by: Optional[str],
    ) -> Quote:
        return self.costs.quote_window(
            draft.start,
            draft.end,
            draft.break_minutes,
            draft.hourly_rate,
            promo_code,
            consume_promo=consume,
            used_by=used_by,
        )

    def _current_rate(self, shift: Shift) -> float:
        # Block members keep the rate they were posted with
        if self.rate_lookup is None or shift.block_id or shift.independent_pay:
            return shift.hourly_rate
        rate = self.rate_lookup(shift.venue_id, shift.role)
        return rate if rate else shift.hourly_rate

    def _repricer(self, quotes: Dict[str, Quote], use_current_rate: bool):
        def reprice(shift: Shift) -> Quote:
            rate = self._current_rate(shift) if use_current_rate else shift.hourly_rate
            quote = self.costs.requote(shift.billable_hours, rate, shift.promo_code)
            quotes[shift.id] = quote
            return quote

        return reprice

    # =========================================================================
    # Posting
    # =========================================================================

    def post_shift(
        self, venue: Actor, draft: DraftInput, promo_code: Optional[str] = None
    ) -> OfferResult:
        """Price a draft and create it as an open shift."""
        _require_venue(venue)
        draft = _as_draft(draft)
        shift = Shift.from_draft(draft, venue.id)
        quote = self._quote_draft(draft, promo_code, consume=True, used_by=venue.id)
        shift.apply_quote(quote)
        created = self.lifecycle.create(shift, venue)
        logger.info("Venue %s posted shift %s (%s)", venue.id, created.id, created.role)
        return OfferResult(shifts=[created], quote=quote)

    def post_block(
        self,
        venue: Actor,
        drafts: Sequence[DraftInput],
        independent_pay: bool = False,
        promo_code: Optional[str] = None,
    ) -> OfferResult:
        """Create linked shifts sharing a block id.

        Members must share role and rate unless ``independent_pay`` is set.
        A promo code discounts every member and is consumed once.
        """
        _require_venue(venue)
        drafts = [_as_draft(d) for d in drafts]
        if not drafts:
            raise ValueError("A block needs at least one shift")

        block_id = str(uuid.uuid4())
        shifts = [
            Shift.from_draft(d, venue.id, block_id=block_id, independent_pay=independent_pay)
            for d in drafts
        ]
        check_block_invariants(shifts)

        quotes = [
            self._quote_draft(d, promo_code, consume=False, used_by=venue.id) for d in drafts
        ]
        if promo_code:
            # Validated above for each member; consumed once for the block
            self.costs.quote_block(
                [(q.hours, q.hourly_rate) for q in quotes],
                promo_code,
                consume_promo=True,
                used_by=venue.id,
            )
        for shift, quote in zip(shifts, quotes):
            shift.apply_quote(quote)

        created = self.lifecycle.create_many(shifts, venue, metadata={"block_id": block_id})
        logger.info("Venue %s posted block %s with %d shifts", venue.id, block_id, len(created))
        return OfferResult(shifts=created, quote=sum_quotes(quotes))

    # =========================================================================
    # Offers
    # =========================================================================

    def offer_single(
        self,
        shift_id: str,
        venue: Actor,
        worker_id: str,
        *,
        per_shift: bool = True,
        direct: bool = False,
    ) -> OfferResult:
        """Offer one shift to one worker at the venue's current rate.

        Block members keep the rate the block was posted with. Refused while a
        block sibling holds an outstanding offer to a different worker.
        """
        shift = self.lifecycle.get_shift(shift_id)
        if shift.block_id and per_shift:
            for sibling in self.lifecycle.get_block(shift.block_id):
                if (
                    sibling.id != shift.id
                    and sibling.has_outstanding_offer
                    and sibling.proposed_worker_id != worker_id
                ):
                    raise ConflictingOffer(
                        f"Shift {sibling.id} in block {shift.block_id} is already offered "
                        f"to worker {sibling.proposed_worker_id}",
                        shift_id=shift.id,
                        actor_id=venue.id,
                        detail="withdraw that offer or offer the whole block",
                    )

        quotes: Dict[str, Quote] = {}
        shifts = self.lifecycle.offer(
            shift_id,
            venue,
            worker_id,
            direct=direct,
            per_shift=per_shift,
            repricer=self._repricer(quotes, use_current_rate=True),
        )
        return OfferResult(shifts=shifts, quote=sum_quotes(quotes.values()) if quotes else None)

    def offer_direct(
        self,
        venue: Actor,
        worker_id: str,
        draft: DraftInput,
        promo_code: Optional[str] = None,
    ) -> OfferResult:
        """Create a shift already offered to a named worker, with a frozen quote."""
        _require_venue(venue)
        draft = _as_draft(draft)
        shift = Shift.from_draft(draft, venue.id, status=ShiftStatus.OFFERED_TO_WORKER)
        shift.proposed_worker_id = worker_id
        quote = self._quote_draft(draft, promo_code, consume=True, used_by=venue.id)
        shift.apply_quote(quote)
        created = self.lifecycle.create(shift, venue, metadata={"worker_id": worker_id})
        logger.info("Venue %s offered new shift %s directly to %s", venue.id, created.id, worker_id)
        return OfferResult(shifts=[created], quote=quote)

    def offer_block(self, block_id: str, venue: Actor, worker_id: str) -> OfferResult:
        """Offer every open member of a block to one worker, all or nothing."""
        members = self.lifecycle.get_block(block_id)
        if not members:
            raise ShiftNotFound(f"Block {block_id} not found", detail=block_id)
        origin = next((m for m in members if not m.is_terminal), members[0])

        quotes: Dict[str, Quote] = {}
        shifts = self.lifecycle.offer(
            origin.id,
            venue,
            worker_id,
            direct=True,
            repricer=self._repricer(quotes, use_current_rate=True),
        )
        return OfferResult(shifts=shifts, quote=sum_quotes(quotes.values()) if quotes else None)

    # =========================================================================
    # Change requests
    # =========================================================================

    def request_changes(
        self,
        shift_id: str,
        venue: Actor,
        change: Union[Mapping[str, Any], Tuple[datetime, datetime, int]],
    ) -> Tuple[Shift, Quote]:
        """Propose new times; returns the shift and the projected cost."""
        if isinstance(change, Mapping):
            start, end, break_minutes = validate_change_request(dict(change))
        else:
            start, end, break_minutes = change
        shift = self.lifecycle.request_changes(shift_id, venue, start, end, break_minutes)
        projected = self.costs.requote(
            shift.pending_change.billable_hours, shift.hourly_rate, shift.promo_code
        )
        return shift, projected

    def accept_changes(self, shift_id: str, worker: Actor) -> Tuple[Shift, Quote]:
        """Commit the pending change and re-price the shift on its new hours."""
        quotes: Dict[str, Quote] = {}
        shift = self.lifecycle.accept_changes(
            shift_id, worker, repricer=self._repricer(quotes, use_current_rate=False)
        )
        return shift, quotes[shift.id]

    def decline_changes(self, shift_id: str, worker: Actor) -> Shift:
        return self.lifecycle.decline_changes(shift_id, worker)
