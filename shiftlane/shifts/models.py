"""Shift data models.

Models:
- Shift: A scheduled work assignment posted by a venue
- ShiftApplication: A worker's expression of interest in an open shift
- ShiftStateTransition: Audit log entry for lifecycle changes
- PendingChange: A venue-proposed reschedule awaiting the worker's answer
- ShiftDraft: Venue input for a shift that does not exist yet
- Actor: Explicit identity of whoever triggers a transition
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from shiftlane.payroll.costs import Quote
from shiftlane.payroll.duration import MINUTES_PER_DAY, gross_minutes


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ShiftStatus(str, Enum):
    """Shift lifecycle status."""

    POSTED = "posted"  # Open call for applicants
    OFFERED_TO_WORKER = "offered_to_worker"  # One worker holds an outstanding offer
    CONFIRMED = "confirmed"  # Worker accepted; shift is filled
    PENDING_CHANGES = "pending_changes"  # Venue proposed a reschedule
    COMPLETED = "completed"  # End time passed; eligible for settlement
    PENDING_PAYMENT = "pending_payment"  # Invoice created; payout pending
    PENDING_WORKER_REVIEW = "pending_worker_review"  # Paid out; worker asked to review
    PAID = "paid"  # Terminal: settled
    CANCELLED = "cancelled"  # Terminal: cancelled by a party


# Legacy values still found in stored records
STATUS_ALIASES = {"filled": ShiftStatus.CONFIRMED.value}

TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {ShiftStatus.CANCELLED.value, ShiftStatus.PAID.value}
)

# Valid state transitions
VALID_SHIFT_TRANSITIONS: Dict[ShiftStatus, set] = {
    ShiftStatus.POSTED: {
        ShiftStatus.POSTED,
        ShiftStatus.OFFERED_TO_WORKER,
        ShiftStatus.CANCELLED,
    },
    ShiftStatus.OFFERED_TO_WORKER: {
        ShiftStatus.CONFIRMED,
        ShiftStatus.POSTED,
        ShiftStatus.CANCELLED,
    },
    ShiftStatus.CONFIRMED: {
        ShiftStatus.PENDING_CHANGES,
        ShiftStatus.COMPLETED,
        ShiftStatus.CANCELLED,
    },
    ShiftStatus.PENDING_CHANGES: {
        ShiftStatus.CONFIRMED,
        ShiftStatus.CANCELLED,
    },
    ShiftStatus.COMPLETED: {ShiftStatus.PENDING_PAYMENT},
    ShiftStatus.PENDING_PAYMENT: {
        ShiftStatus.PENDING_WORKER_REVIEW,
        ShiftStatus.PAID,
    },
    ShiftStatus.PENDING_WORKER_REVIEW: {ShiftStatus.PAID},
    ShiftStatus.PAID: set(),
    ShiftStatus.CANCELLED: set(),
}


def normalize_status(status: Any) -> str:
    """Return the canonical string value for a status (enum, alias or string)."""
    if isinstance(status, ShiftStatus):
        return status.value
    value = STATUS_ALIASES.get(status, status)
    valid = [s.value for s in ShiftStatus]
    if value not in valid:
        raise ValueError(f"Invalid status: {status}. Must be one of {valid}")
    return value


class ApplicationStatus(str, Enum):
    """Application lifecycle status."""

    PENDING = "pending"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"  # Declined, or superseded when another worker was hired
    WITHDRAWN = "withdrawn"


ACTIONABLE_APPLICATION_STATUSES = frozenset(
    {ApplicationStatus.PENDING.value, ApplicationStatus.OFFERED.value}
)


class ActorRole(str, Enum):
    VENUE = "venue"
    WORKER = "worker"
    SYSTEM = "system"


class ShiftEdge(str, Enum):
    """Named lifecycle operations."""

    CREATE = "create"
    APPLY = "apply"
    WITHDRAW_APPLICATION = "withdraw_application"
    OFFER = "offer"
    DIRECT_OFFER = "direct_offer"
    ACCEPT_OFFER = "accept_offer"
    DECLINE_OFFER = "decline_offer"
    WITHDRAW_OFFER = "withdraw_offer"
    REQUEST_CHANGES = "request_changes"
    ACCEPT_CHANGES = "accept_changes"
    DECLINE_CHANGES = "decline_changes"
    EXPIRE_CHANGES = "expire_changes"
    CANCEL = "cancel"
    COMPLETE = "complete"
    FINALIZE = "finalize"
    SETTLE_PAYOUT = "settle_payout"
    SUBMIT_WORKER_REVIEW = "submit_worker_review"


_S = ShiftStatus
_R = ActorRole

# edge -> (statuses it may start from, roles allowed to trigger it)
EDGE_RULES: Dict[ShiftEdge, Tuple[FrozenSet[ShiftStatus], FrozenSet[ActorRole]]] = {
    ShiftEdge.APPLY: (frozenset({_S.POSTED}), frozenset({_R.WORKER})),
    ShiftEdge.WITHDRAW_APPLICATION: (frozenset({_S.POSTED}), frozenset({_R.WORKER})),
    ShiftEdge.OFFER: (frozenset({_S.POSTED, _S.OFFERED_TO_WORKER}), frozenset({_R.VENUE})),
    ShiftEdge.DIRECT_OFFER: (frozenset({_S.POSTED, _S.OFFERED_TO_WORKER}), frozenset({_R.VENUE})),
    ShiftEdge.ACCEPT_OFFER: (frozenset({_S.OFFERED_TO_WORKER}), frozenset({_R.WORKER})),
    ShiftEdge.DECLINE_OFFER: (frozenset({_S.OFFERED_TO_WORKER}), frozenset({_R.WORKER})),
    ShiftEdge.WITHDRAW_OFFER: (frozenset({_S.OFFERED_TO_WORKER}), frozenset({_R.VENUE})),
    ShiftEdge.REQUEST_CHANGES: (frozenset({_S.CONFIRMED}), frozenset({_R.VENUE})),
    ShiftEdge.ACCEPT_CHANGES: (frozenset({_S.PENDING_CHANGES}), frozenset({_R.WORKER})),
    ShiftEdge.DECLINE_CHANGES: (frozenset({_S.PENDING_CHANGES}), frozenset({_R.WORKER})),
    ShiftEdge.EXPIRE_CHANGES: (frozenset({_S.PENDING_CHANGES}), frozenset({_R.SYSTEM})),
    ShiftEdge.CANCEL: (
        frozenset({_S.POSTED, _S.OFFERED_TO_WORKER, _S.CONFIRMED, _S.PENDING_CHANGES}),
        frozenset({_R.VENUE, _R.WORKER}),
    ),
    ShiftEdge.COMPLETE: (frozenset({_S.CONFIRMED}), frozenset({_R.SYSTEM})),
    ShiftEdge.FINALIZE: (frozenset({_S.COMPLETED}), frozenset({_R.VENUE})),
    ShiftEdge.SETTLE_PAYOUT: (frozenset({_S.PENDING_PAYMENT}), frozenset({_R.SYSTEM})),
    ShiftEdge.SUBMIT_WORKER_REVIEW: (
        frozenset({_S.PENDING_WORKER_REVIEW}),
        frozenset({_R.WORKER}),
    ),
}


@dataclass(frozen=True)
class Actor:
    """Who is asking for a transition."""

    id: str
    role: ActorRole

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Actor id cannot be empty")
        if not isinstance(self.role, ActorRole):
            object.__setattr__(self, "role", ActorRole(self.role))

    @classmethod
    def venue(cls, venue_id: str) -> "Actor":
        return cls(venue_id, ActorRole.VENUE)

    @classmethod
    def worker(cls, worker_id: str) -> "Actor":
        return cls(worker_id, ActorRole.WORKER)

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(name, ActorRole.SYSTEM)


@dataclass
class PendingChange:
    """A proposed reschedule; authoritative only once the worker accepts."""

    start: datetime
    end: datetime
    break_minutes: int = 0
    requested_by: Optional[str] = None
    requested_at: Optional[datetime] = None

    @property
    def billable_hours(self) -> float:
        minutes = gross_minutes(self.start, self.end)
        return max(0.0, (minutes - self.break_minutes) / 60)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "break_minutes": self.break_minutes,
            "requested_by": self.requested_by,
            "requested_at": _iso(self.requested_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingChange":
        return cls(
            start=_parse_dt(data["start"]),
            end=_parse_dt(data["end"]),
            break_minutes=int(data.get("break_minutes", 0)),
            requested_by=data.get("requested_by"),
            requested_at=_parse_dt(data.get("requested_at")),
        )


@dataclass
class ShiftDraft:
    """Venue input describing a shift before it is created."""

    role: str
    start: datetime
    end: datetime
    hourly_rate: float
    break_minutes: int = 0
    location: str = ""
    description: Optional[str] = None
    uniform: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    is_priority: bool = False


@dataclass
class Shift:
    """A single scheduled work assignment.

    Mutated only through :class:`~shiftlane.shifts.lifecycle.ShiftLifecycle`.
    Never deleted once a worker has applied or been offered it; cancellation
    is a terminal status.
    """

    id: str
    venue_id: str
    role: str
    start: datetime
    end: datetime
    hourly_rate: float
    break_minutes: int = 0
    location: str = ""
    description: Optional[str] = None
    uniform: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    is_priority: bool = False
    status: str = ShiftStatus.POSTED.value

    # Parties
    worker_id: Optional[str] = None
    proposed_worker_id: Optional[str] = None
    applicant_ids: List[str] = field(default_factory=list)

    # Blocks
    block_id: Optional[str] = None
    independent_pay: bool = False

    # Commercial figures, always written together from a Quote
    base_pay: float = 0.0
    service_fee: float = 0.0
    discount: float = 0.0
    total_cost: float = 0.0
    promo_code: Optional[str] = None

    pending_change: Optional[PendingChange] = None

    # Settlement
    final_start: Optional[datetime] = None
    final_end: Optional[datetime] = None
    final_break_minutes: Optional[int] = None
    final_hours: Optional[float] = None
    invoice_id: Optional[str] = None
    venue_review: Optional[Dict[str, Any]] = None
    worker_review: Optional[Dict[str, Any]] = None

    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    offered_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    version: int = 1

    def __post_init__(self):
        self.status = normalize_status(self.status)

        if not self.role or not self.role.strip():
            raise ValueError("Role cannot be empty")
        if not self.venue_id:
            raise ValueError("Shift must belong to a venue")
        if self.hourly_rate <= 0:
            raise ValueError("Hourly rate must be positive")
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Shift start and end must be timezone-aware")
        if self.gross_minutes <= 0:
            raise ValueError("Shift end must be after start")
        if self.gross_minutes > MINUTES_PER_DAY:
            raise ValueError("Shift cannot be longer than 24 hours")
        if self.break_minutes < 0:
            raise ValueError("Break cannot be negative")
        if self.break_minutes > self.gross_minutes:
            raise ValueError("Break cannot be longer than the shift")
        if len(set(self.applicant_ids)) != len(self.applicant_ids):
            raise ValueError("Applicant list cannot contain duplicates")

    # === Derived values ===

    @property
    def gross_minutes(self) -> int:
        delta = self.end.astimezone(timezone.utc) - self.start.astimezone(timezone.utc)
        return int(delta.total_seconds() // 60)

    @property
    def billable_hours(self) -> float:
        return max(0.0, (self.gross_minutes - self.break_minutes) / 60)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status == ShiftStatus.POSTED.value

    @property
    def has_outstanding_offer(self) -> bool:
        return (
            self.status == ShiftStatus.OFFERED_TO_WORKER.value
            and self.proposed_worker_id is not None
        )

    @property
    def holder_id(self) -> Optional[str]:
        """Worker currently holding the offer or the assignment, if any."""
        if self.has_outstanding_offer:
            return self.proposed_worker_id
        if self.status in (ShiftStatus.CONFIRMED.value, ShiftStatus.PENDING_CHANGES.value):
            return self.worker_id
        return None

    def can_transition_to(self, new_status: ShiftStatus) -> bool:
        current = ShiftStatus(self.status)
        return ShiftStatus(normalize_status(new_status)) in VALID_SHIFT_TRANSITIONS[current]

    def apply_quote(self, quote: Quote) -> None:
        """Write the commercial figures from one quote."""
        if quote.hourly_rate is not None:
            self.hourly_rate = quote.hourly_rate
        self.base_pay = quote.base_pay
        self.service_fee = quote.service_fee
        self.discount = quote.discount
        self.total_cost = quote.total_cost
        if quote.promo_code:
            self.promo_code = quote.promo_code

    # === Serialization ===

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "role": self.role,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "hourly_rate": self.hourly_rate,
            "break_minutes": self.break_minutes,
            "location": self.location,
            "description": self.description,
            "uniform": self.uniform,
            "requirements": list(self.requirements),
            "is_priority": self.is_priority,
            "status": self.status,
            "worker_id": self.worker_id,
            "proposed_worker_id": self.proposed_worker_id,
            "applicant_ids": list(self.applicant_ids),
            "block_id": self.block_id,
            "independent_pay": self.independent_pay,
            "base_pay": self.base_pay,
            "service_fee": self.service_fee,
            "discount": self.discount,
            "total_cost": self.total_cost,
            "promo_code": self.promo_code,
            "pending_change": self.pending_change.to_dict() if self.pending_change else None,
            "final_start": _iso(self.final_start),
            "final_end": _iso(self.final_end),
            "final_break_minutes": self.final_break_minutes,
            "final_hours": self.final_hours,
            "invoice_id": self.invoice_id,
            "venue_review": self.venue_review,
            "worker_review": self.worker_review,
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "offered_at": _iso(self.offered_at),
            "confirmed_at": _iso(self.confirmed_at),
            "completed_at": _iso(self.completed_at),
            "finalized_at": _iso(self.finalized_at),
            "paid_at": _iso(self.paid_at),
            "cancelled_at": _iso(self.cancelled_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Shift":
        pending = data.get("pending_change")
        return cls(
            id=data["id"],
            venue_id=data["venue_id"],
            role=data["role"],
            start=_parse_dt(data["start"]),
            end=_parse_dt(data["end"]),
            hourly_rate=float(data["hourly_rate"]),
            break_minutes=int(data.get("break_minutes") or 0),
            location=data.get("location") or "",
            description=data.get("description"),
            uniform=data.get("uniform"),
            requirements=list(data.get("requirements") or []),
            is_priority=bool(data.get("is_priority", False)),
            status=data.get("status", ShiftStatus.POSTED.value),
            worker_id=data.get("worker_id"),
            proposed_worker_id=data.get("proposed_worker_id"),
            applicant_ids=list(data.get("applicant_ids") or []),
            block_id=data.get("block_id"),
            independent_pay=bool(data.get("independent_pay", False)),
            base_pay=float(data.get("base_pay") or 0.0),
            service_fee=float(data.get("service_fee") or 0.0),
            discount=float(data.get("discount") or 0.0),
            total_cost=float(data.get("total_cost") or 0.0),
            promo_code=data.get("promo_code"),
            pending_change=PendingChange.from_dict(pending) if pending else None,
            final_start=_parse_dt(data.get("final_start")),
            final_end=_parse_dt(data.get("final_end")),
            final_break_minutes=data.get("final_break_minutes"),
            final_hours=data.get("final_hours"),
            invoice_id=data.get("invoice_id"),
            venue_review=data.get("venue_review"),
            worker_review=data.get("worker_review"),
            cancelled_by=data.get("cancelled_by"),
            cancel_reason=data.get("cancel_reason"),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            offered_at=_parse_dt(data.get("offered_at")),
            confirmed_at=_parse_dt(data.get("confirmed_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            finalized_at=_parse_dt(data.get("finalized_at")),
            paid_at=_parse_dt(data.get("paid_at")),
            cancelled_at=_parse_dt(data.get("cancelled_at")),
            version=int(data.get("version", 1)),
        )

    @classmethod
    def from_draft(
        cls,
        draft: ShiftDraft,
        venue_id: str,
        status: ShiftStatus = ShiftStatus.POSTED,
        block_id: Optional[str] = None,
        independent_pay: bool = False,
    ) -> "Shift":
        return cls(
            id=_new_id(),
            venue_id=venue_id,
            role=draft.role,
            start=draft.start,
            end=draft.end,
            hourly_rate=draft.hourly_rate,
            break_minutes=draft.break_minutes,
            location=draft.location,
            description=draft.description,
            uniform=draft.uniform,
            requirements=list(draft.requirements),
            is_priority=draft.is_priority,
            status=status,
            block_id=block_id,
            independent_pay=independent_pay,
        )


@dataclass
class ShiftApplication:
    """A worker's application to an open shift."""

    id: str
    shift_id: str
    worker_id: str
    status: str = ApplicationStatus.PENDING.value
    applied_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, ApplicationStatus):
            self.status = self.status.value
        valid = [s.value for s in ApplicationStatus]
        if self.status not in valid:
            raise ValueError(f"Invalid status: {self.status}. Must be one of {valid}")
        if not self.worker_id:
            raise ValueError("Application must name a worker")

    @property
    def is_pending(self) -> bool:
        return self.status == ApplicationStatus.PENDING.value

    @property
    def is_actionable(self) -> bool:
        """Whether the application can still lead to a hire."""
        return self.status in ACTIONABLE_APPLICATION_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "worker_id": self.worker_id,
            "status": self.status,
            "applied_at": _iso(self.applied_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShiftApplication":
        return cls(
            id=data["id"],
            shift_id=data["shift_id"],
            worker_id=data["worker_id"],
            status=data.get("status", ApplicationStatus.PENDING.value),
            applied_at=_parse_dt(data.get("applied_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class ShiftStateTransition:
    """Audit log entry for a shift lifecycle change."""

    id: str
    shift_id: str
    to_status: str
    actor_id: str
    from_status: Optional[str] = None  # None for creation
    actor_role: Optional[str] = None
    edge: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "edge": self.edge,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShiftStateTransition":
        return cls(
            id=data["id"],
            shift_id=data["shift_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data["actor_id"],
            actor_role=data.get("actor_role"),
            edge=data.get("edge"),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_dt(data.get("created_at")),
        )
