"""Cost engine: hours and rates to base pay, service fee, discount and total.

The same engine produces the venue's draft projection, the locked cost shown
with an offer, and the settled cost on an invoice. Arithmetic stays in full
float precision; rounding to cents happens only for display.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Tuple, Union

from shiftlane.config import PayrollConfig
from shiftlane.errors import PromoCodeInvalid
from shiftlane.payroll.duration import compute_billable_hours
from shiftlane.payroll.promo import (
    PromoCode,
    PromoCodeStorage,
    PromoType,
    QuoteKind,
    normalize_code,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def round_cents(value: float) -> Decimal:
    """Round a monetary amount to cents, half-up."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _check_amount(value, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number, got {type(value).__name__}")
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"{field_name} must be a finite number, got {value}")
    if value < 0:
        raise ValueError(f"{field_name} cannot be negative, got {value}")
    return float(value)


@dataclass(frozen=True)
class Quote:
    """Monetary figures for one shift (or an aggregated block)."""

    hours: float
    hourly_rate: Optional[float]
    base_pay: float
    service_fee: float
    discount: float = 0.0
    total_cost: float = 0.0
    promo_code: Optional[str] = None
    promo_type: Optional[str] = None

    def display(self) -> Dict[str, Decimal]:
        """Figures rounded to cents for presentation."""
        return {
            "hours": Decimal(str(self.hours)).quantize(CENTS, rounding=ROUND_HALF_UP),
            "base_pay": round_cents(self.base_pay),
            "service_fee": round_cents(self.service_fee),
            "discount": round_cents(self.discount),
            "total_cost": round_cents(self.total_cost),
        }

    def to_dict(self) -> dict:
        shown = self.display()
        return {
            "hours": self.hours,
            "hourly_rate": self.hourly_rate,
            "base_pay": str(shown["base_pay"]),
            "service_fee": str(shown["service_fee"]),
            "discount": str(shown["discount"]),
            "total_cost": str(shown["total_cost"]),
            "promo_code": self.promo_code,
            "promo_type": self.promo_type,
        }


def sum_quotes(quotes: Iterable[Quote]) -> Quote:
    """Add up per-shift quotes into one block figure without rounding."""
    quotes = list(quotes)
    if not quotes:
        raise ValueError("sum_quotes needs at least one quote")
    rates = {q.hourly_rate for q in quotes}
    codes = {q.promo_code for q in quotes if q.promo_code}
    types = {q.promo_type for q in quotes if q.promo_type}
    return Quote(
        hours=sum(q.hours for q in quotes),
        hourly_rate=rates.pop() if len(rates) == 1 else None,
        base_pay=sum(q.base_pay for q in quotes),
        service_fee=sum(q.service_fee for q in quotes),
        discount=sum(q.discount for q in quotes),
        total_cost=sum(q.total_cost for q in quotes),
        promo_code=codes.pop() if len(codes) == 1 else None,
        promo_type=types.pop() if len(types) == 1 else None,
    )


@dataclass(frozen=True)
class JobPostingQuote:
    """Fees for posting a permanent job (flat listing fee + weekly-cost fee)."""

    weekly_cost: float
    listing_fee: float
    service_fee: float
    discount: float = 0.0
    total_cost: float = 0.0
    promo_code: Optional[str] = None

    def display(self) -> Dict[str, Decimal]:
        return {
            "listing_fee": round_cents(self.listing_fee),
            "service_fee": round_cents(self.service_fee),
            "discount": round_cents(self.discount),
            "total_cost": round_cents(self.total_cost),
        }

    def to_dict(self) -> dict:
        shown = self.display()
        return {
            "weekly_cost": self.weekly_cost,
            "listing_fee": str(shown["listing_fee"]),
            "service_fee": str(shown["service_fee"]),
            "discount": str(shown["discount"]),
            "total_cost": str(shown["total_cost"]),
            "promo_code": self.promo_code,
        }


class CostEngine:
    """Computes quotes from hours, rates and optional promo codes.

    Args:
        config: Fee schedule. Defaults to the production schedule.
        promo_codes: Registry used to validate and consume promo codes.
    """

    def __init__(
        self,
        config: Optional[PayrollConfig] = None,
        promo_codes: Optional[PromoCodeStorage] = None,
    ):
        self.config = config or PayrollConfig()
        self.promo_codes = promo_codes

    # === Shift quotes ===

    def quote(
        self,
        hours: float,
        hourly_rate: float,
        promo_code: Optional[str] = None,
        *,
        consume_promo: bool = True,
        used_by: Optional[str] = None,
    ) -> Quote:
        """Quote a shift.

        Args:
            hours: Billable hours.
            hourly_rate: Worker pay per hour.
            promo_code: Optional promo code to apply.
            consume_promo: Mark the code used. Pass False for draft previews.
            used_by: Actor recorded against the consumed code.

        Raises:
            PromoCodeInvalid: If the code is unknown, used, or inapplicable.
        """
        hours = _check_amount(hours, "hours")
        hourly_rate = _check_amount(hourly_rate, "hourly_rate")
        base_pay = hours * hourly_rate
        return self._build_quote(
            hours, hourly_rate, base_pay, promo_code, consume_promo=consume_promo, used_by=used_by
        )

    def quote_window(
        self,
        start: Union[time, datetime],
        end: Union[time, datetime],
        break_minutes: int,
        hourly_rate: float,
        promo_code: Optional[str] = None,
        *,
        consume_promo: bool = True,
        used_by: Optional[str] = None,
    ) -> Quote:
        """Quote a shift straight from its start, end and break."""
        hours = compute_billable_hours(
            start,
            end,
            break_minutes,
            increment=self.config.time_increment_minutes,
            max_hours=self.config.max_shift_hours,
        )
        return self.quote(
            hours, hourly_rate, promo_code, consume_promo=consume_promo, used_by=used_by
        )

    def quote_block(
        self,
        items: Iterable[Tuple[float, float]],
        promo_code: Optional[str] = None,
        *,
        consume_promo: bool = True,
        used_by: Optional[str] = None,
    ) -> Quote:
        """Quote several shifts as one, summing before any rounding.

        Args:
            items: ``(hours, hourly_rate)`` pairs.
        """
        pairs = [
            (_check_amount(h, "hours"), _check_amount(r, "hourly_rate")) for h, r in items
        ]
        if not pairs:
            raise ValueError("quote_block needs at least one shift")
        hours = sum(h for h, _ in pairs)
        base_pay = sum(h * r for h, r in pairs)
        rates = {r for _, r in pairs}
        hourly_rate = rates.pop() if len(rates) == 1 else None
        return self._build_quote(
            hours, hourly_rate, base_pay, promo_code, consume_promo=consume_promo, used_by=used_by
        )

    def _build_quote(
        self,
        hours: float,
        hourly_rate: Optional[float],
        base_pay: float,
        promo_code: Optional[str],
        *,
        consume_promo: bool,
        used_by: Optional[str],
    ) -> Quote:
        promo: Optional[PromoCode] = None
        if promo_code:
            promo = self._resolve_promo(promo_code, QuoteKind.SHIFT)
            if consume_promo:
                self._consume(promo, used_by)
        return self._assemble(hours, hourly_rate, base_pay, promo)

    def _assemble(
        self,
        hours: float,
        hourly_rate: Optional[float],
        base_pay: float,
        promo: Optional[PromoCode],
    ) -> Quote:
        service_fee = base_pay * self.config.service_fee_rate
        discount = 0.0
        if promo is not None:
            if promo.promo_type == PromoType.FREE_SHIFT_POSTING:
                discount = service_fee
            elif promo.promo_type == PromoType.FREE_JOB_POSTING:
                discount = base_pay + service_fee
            elif promo.promo_type == PromoType.FEE_DISCOUNT_10:
                discount = service_fee * 0.1

        total_cost = max(0.0, base_pay + service_fee - discount)
        return Quote(
            hours=hours,
            hourly_rate=hourly_rate,
            base_pay=base_pay,
            service_fee=service_fee,
            discount=discount,
            total_cost=total_cost,
            promo_code=promo.code if promo else None,
            promo_type=promo.type if promo else None,
        )

    def requote(
        self, hours: float, hourly_rate: float, promo_code: Optional[str] = None
    ) -> Quote:
        """Recompute a quote for a shift that already carries a consumed code.

        The code's type still decides the discount; its used flag is ignored
        and nothing is consumed.
        """
        hours = _check_amount(hours, "hours")
        hourly_rate = _check_amount(hourly_rate, "hourly_rate")
        promo = None
        if promo_code:
            if self.promo_codes is None:
                raise PromoCodeInvalid(
                    f"Promo code {promo_code!r} cannot be applied: no promo registry configured",
                    code=promo_code,
                )
            promo = self.promo_codes.get_code(promo_code)
            if promo is None:
                raise PromoCodeInvalid(f"Promo code {promo_code!r} not found", code=promo_code)
        return self._assemble(hours, hourly_rate, hours * hourly_rate, promo)

    # === Job posting quotes ===

    def quote_job_posting(
        self,
        weekly_cost: float = 0.0,
        promo_code: Optional[str] = None,
        *,
        consume_promo: bool = True,
        used_by: Optional[str] = None,
    ) -> JobPostingQuote:
        """Quote a permanent-job listing: flat fee plus a share of weekly cost."""
        weekly_cost = _check_amount(weekly_cost, "weekly_cost")
        listing_fee = self.config.job_listing_fee
        service_fee = weekly_cost * self.config.job_weekly_fee_rate
        discount = 0.0
        promo: Optional[PromoCode] = None

        if promo_code:
            promo = self._resolve_promo(promo_code, QuoteKind.JOB_POSTING)
            discount = listing_fee + service_fee
            if consume_promo:
                self._consume(promo, used_by)

        return JobPostingQuote(
            weekly_cost=weekly_cost,
            listing_fee=listing_fee,
            service_fee=service_fee,
            discount=discount,
            total_cost=max(0.0, listing_fee + service_fee - discount),
            promo_code=promo.code if promo else None,
        )

    # === Promo codes ===

    def _resolve_promo(self, code: str, kind: QuoteKind) -> PromoCode:
        if self.promo_codes is None:
            raise PromoCodeInvalid(
                f"Promo code {code!r} cannot be applied: no promo registry configured",
                code=code,
            )
        promo = self.promo_codes.get_code(code)
        if promo is None:
            raise PromoCodeInvalid(f"Promo code {code!r} not found", code=code)
        if promo.used:
            raise PromoCodeInvalid(f"Promo code {promo.code} has already been used", code=code)
        if not promo.applies_to(kind):
            raise PromoCodeInvalid(
                f"Promo code {promo.code} ({promo.type}) does not apply to {kind.value} quotes",
                code=code,
            )
        return promo

    def consume_promo_code(self, code: str, used_by: Optional[str] = None) -> None:
        """Mark a shift promo code used without quoting.

        Raises:
            PromoCodeInvalid: If the code is unknown, used, or inapplicable.
        """
        self._consume(self._resolve_promo(code, QuoteKind.SHIFT), used_by)

    def release_promo_code(self, code: str) -> None:
        """Hand a consumed code back after the operation that used it failed."""
        if self.promo_codes is not None and self.promo_codes.release(code):
            logger.info("Promo code %s released", normalize_code(code))

    def _consume(self, promo: PromoCode, used_by: Optional[str]) -> None:
        if not self.promo_codes.mark_used(promo.code, used_by=used_by):
            raise PromoCodeInvalid(f"Promo code {promo.code} has already been used", code=promo.code)
        logger.info("Promo code %s (%s) consumed by %s", promo.code, promo.type, used_by)
