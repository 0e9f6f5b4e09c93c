"""Payroll subsystem: hours, costs, promo codes and invoices.

Duration:
- compute_billable_hours: Clock times and a break to billable hours

Costs:
- CostEngine: Quotes for shifts, blocks and job postings
- Quote / JobPostingQuote: Monetary figures, rounded only for display

Promo codes:
- PromoCode, PromoType, InMemoryPromoCodeStorage, generate_promo_codes

Invoices:
- Invoice, InvoiceLineItem, InvoiceLedger, InMemoryInvoiceLedger

Settlement lives in ``shiftlane.payroll.settlement``; it drives the shift
lifecycle and is imported from there directly.
"""

from shiftlane.payroll.costs import CostEngine, JobPostingQuote, Quote, round_cents, sum_quotes
from shiftlane.payroll.duration import (
    compute_billable_hours,
    gross_minutes,
    resolve_window,
    snap_to_increment,
    validate_increment,
)
from shiftlane.payroll.invoice import (
    InMemoryInvoiceLedger,
    Invoice,
    InvoiceLedger,
    InvoiceLineItem,
    build_shift_invoice,
)
from shiftlane.payroll.promo import (
    InMemoryPromoCodeStorage,
    PromoCode,
    PromoCodeStorage,
    PromoType,
    QuoteKind,
    generate_promo_codes,
)

__all__ = [
    # Duration
    "compute_billable_hours",
    "gross_minutes",
    "resolve_window",
    "snap_to_increment",
    "validate_increment",
    # Costs
    "CostEngine",
    "Quote",
    "JobPostingQuote",
    "round_cents",
    "sum_quotes",
    # Promo codes
    "PromoCode",
    "PromoType",
    "QuoteKind",
    "PromoCodeStorage",
    "InMemoryPromoCodeStorage",
    "generate_promo_codes",
    # Invoices
    "Invoice",
    "InvoiceLineItem",
    "InvoiceLedger",
    "InMemoryInvoiceLedger",
    "build_shift_invoice",
]
