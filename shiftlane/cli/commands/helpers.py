"""Shared helpers for CLI commands."""

import json
import re
from dataclasses import dataclass
from datetime import time
from typing import Any, Optional

from shiftlane.config import PayrollConfig
from shiftlane.notifications import LoggingNotifier
from shiftlane.payroll.costs import CostEngine, Quote
from shiftlane.payroll.settlement import Settlement
from shiftlane.shifts.lifecycle import ShiftLifecycle
from shiftlane.shifts.models import Shift
from shiftlane.shifts.offers import OfferCoordinator
from shiftlane.storage.sqlite import SQLiteStore


@dataclass
class Engine:
    """Everything a command needs, wired to one SQLite database."""

    store: SQLiteStore
    config: PayrollConfig
    costs: CostEngine
    lifecycle: ShiftLifecycle
    offers: OfferCoordinator
    settlement: Settlement

    def close(self) -> None:
        self.store.close()


def build_engine(db_path: str, config: PayrollConfig) -> Engine:
    store = SQLiteStore(db_path)
    costs = CostEngine(config, promo_codes=store)
    lifecycle = ShiftLifecycle(store, notifier=LoggingNotifier(), config=config)
    return Engine(
        store=store,
        config=config,
        costs=costs,
        lifecycle=lifecycle,
        offers=OfferCoordinator(lifecycle, costs),
        settlement=Settlement(lifecycle, costs, invoices=store),
    )


def validate_input(value: str, field_name: str, max_length: int = 200) -> str:
    """Validate and sanitize CLI inputs."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")
    # Remove null bytes and control characters except newlines
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value).strip()


def parse_clock(value: str, field_name: str) -> time:
    """Parse ``HH:MM`` into a time."""
    try:
        return time.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"{field_name} must be HH:MM, got {value!r}") from e


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def format_quote(quote: Quote, currency: str = "NZD") -> str:
    shown = quote.display()
    lines = [
        f"Hours:        {shown['hours']}",
        f"Base pay:     {shown['base_pay']} {currency}",
        f"Service fee:  {shown['service_fee']} {currency}",
    ]
    if quote.promo_code:
        lines.append(f"Discount:     -{shown['discount']} {currency} ({quote.promo_code})")
    lines.append(f"Total:        {shown['total_cost']} {currency}")
    return "\n".join(lines)


def format_shift(shift: Shift, verbose: bool = False) -> str:
    holder: Optional[str] = shift.holder_id
    line = (
        f"{shift.id}  {shift.status:<22} {shift.role:<16} "
        f"{shift.start.isoformat()} -> {shift.end.isoformat()}"
    )
    if holder:
        line += f"  worker={holder}"
    if not verbose:
        return line

    details = [
        line,
        f"  venue:       {shift.venue_id}",
        f"  rate:        {shift.hourly_rate:.2f}/h, break {shift.break_minutes} min",
        f"  total cost:  {shift.total_cost:.2f}",
    ]
    if shift.block_id:
        details.append(f"  block:       {shift.block_id}")
    if shift.applicant_ids:
        details.append(f"  applicants:  {', '.join(shift.applicant_ids)}")
    if shift.pending_change:
        pc = shift.pending_change
        details.append(
            f"  pending:     {pc.start.isoformat()} -> {pc.end.isoformat()}, "
            f"break {pc.break_minutes} min"
        )
    if shift.invoice_id:
        details.append(f"  invoice:     {shift.invoice_id}")
    return "\n".join(details)
