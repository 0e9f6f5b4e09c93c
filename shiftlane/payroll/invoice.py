"""Settlement invoices.

An invoice is produced once, when a venue finalizes a completed shift, and
is immutable afterwards. Persisting it and triggering the payout belong to
an external ledger reached through :class:`InvoiceLedger`.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from shiftlane.payroll.costs import Quote, round_cents

logger = logging.getLogger(__name__)


def new_invoice_id() -> str:
    return f"INV-{uuid.uuid4().hex[:10].upper()}"


@dataclass(frozen=True)
class InvoiceLineItem:
    description: str
    total: float
    shift_id: Optional[str] = None
    shift_date: Optional[datetime] = None
    role: Optional[str] = None
    hours: Optional[float] = None
    rate: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "shift_id": self.shift_id,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "role": self.role,
            "hours": self.hours,
            "rate": self.rate,
            "total": str(round_cents(self.total)),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceLineItem":
        shift_date = data.get("shift_date")
        return cls(
            description=data["description"],
            total=float(data["total"]),
            shift_id=data.get("shift_id"),
            shift_date=datetime.fromisoformat(shift_date) if shift_date else None,
            role=data.get("role"),
            hours=data.get("hours"),
            rate=data.get("rate"),
        )


@dataclass(frozen=True)
class Invoice:
    """Immutable settlement artifact for one or more shifts."""

    id: str
    venue_id: str
    shift_ids: Tuple[str, ...]
    line_items: Tuple[InvoiceLineItem, ...]
    subtotal: float
    service_fee: float
    total_amount: float
    worker_id: Optional[str] = None
    discount: float = 0.0
    currency: str = "NZD"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.shift_ids:
            raise ValueError("Invoice must reference at least one shift")
        if not self.line_items:
            raise ValueError("Invoice must have at least one line item")
        if self.total_amount < 0:
            raise ValueError("Invoice total cannot be negative")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "worker_id": self.worker_id,
            "shift_ids": list(self.shift_ids),
            "line_items": [item.to_dict() for item in self.line_items],
            "subtotal": str(round_cents(self.subtotal)),
            "service_fee": str(round_cents(self.service_fee)),
            "discount": str(round_cents(self.discount)),
            "total_amount": str(round_cents(self.total_amount)),
            "currency": self.currency,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        return cls(
            id=data["id"],
            venue_id=data["venue_id"],
            worker_id=data.get("worker_id"),
            shift_ids=tuple(data["shift_ids"]),
            line_items=tuple(InvoiceLineItem.from_dict(i) for i in data["line_items"]),
            subtotal=float(data["subtotal"]),
            service_fee=float(data["service_fee"]),
            discount=float(data.get("discount", 0)),
            total_amount=float(data["total_amount"]),
            currency=data.get("currency", "NZD"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


def build_shift_invoice(
    venue_id: str,
    worker_id: Optional[str],
    shift_id: str,
    shift_date: datetime,
    role: str,
    quote: Quote,
    currency: str = "NZD",
) -> Invoice:
    """Build the invoice for one settled shift from its final quote."""
    item = InvoiceLineItem(
        description=f"{role} shift on {shift_date.date().isoformat()}",
        shift_id=shift_id,
        shift_date=shift_date,
        role=role,
        hours=quote.hours,
        rate=quote.hourly_rate,
        total=quote.base_pay,
    )
    return Invoice(
        id=new_invoice_id(),
        venue_id=venue_id,
        worker_id=worker_id,
        shift_ids=(shift_id,),
        line_items=(item,),
        subtotal=quote.base_pay,
        service_fee=quote.service_fee,
        discount=quote.discount,
        total_amount=quote.total_cost,
        currency=currency,
    )


class InvoiceLedger(Protocol):
    """External invoicing responsibility: persists invoices, triggers payout."""

    def save_invoice(self, invoice: Invoice) -> str:
        """Persist an invoice. Returns the invoice ID."""
        ...

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        """Get an invoice by ID."""
        ...

    def list_invoices(
        self, venue_id: Optional[str] = None, worker_id: Optional[str] = None
    ) -> List[Invoice]:
        """List invoices, optionally by party."""
        ...


class InMemoryInvoiceLedger:
    """In-memory invoice ledger for testing and local development."""

    def __init__(self):
        self._invoices: Dict[str, Invoice] = {}

    def save_invoice(self, invoice: Invoice) -> str:
        if invoice.id in self._invoices:
            raise ValueError(f"Invoice {invoice.id} already exists")
        self._invoices[invoice.id] = invoice
        return invoice.id

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self._invoices.get(invoice_id)

    def list_invoices(
        self, venue_id: Optional[str] = None, worker_id: Optional[str] = None
    ) -> List[Invoice]:
        invoices = list(self._invoices.values())
        if venue_id is not None:
            invoices = [i for i in invoices if i.venue_id == venue_id]
        if worker_id is not None:
            invoices = [i for i in invoices if i.worker_id == worker_id]
        invoices.sort(key=lambda i: i.created_at)
        return invoices
