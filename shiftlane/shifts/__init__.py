"""Shift lifecycle subsystem.

Models:
- Shift: A scheduled work assignment posted by a venue
- ShiftApplication: A worker's application to an open shift
- ShiftStatus: Shift lifecycle status
- ApplicationStatus: Application lifecycle status
- ShiftStateTransition: Audit log entry for state changes
- Actor: Who triggers a transition

Lifecycle:
- ShiftLifecycle: The authoritative state machine

Offer coordination (pricing on top of the lifecycle) lives in
``shiftlane.shifts.offers``.
"""

from shiftlane.shifts.lifecycle import ShiftLifecycle, check_block_invariants
from shiftlane.shifts.models import (
    EDGE_RULES,
    TERMINAL_STATUSES,
    VALID_SHIFT_TRANSITIONS,
    Actor,
    ActorRole,
    ApplicationStatus,
    PendingChange,
    Shift,
    ShiftApplication,
    ShiftDraft,
    ShiftEdge,
    ShiftStateTransition,
    ShiftStatus,
)
from shiftlane.shifts.storage import InMemoryShiftStorage, ShiftStorage

__all__ = [
    # Models
    "Shift",
    "ShiftApplication",
    "ShiftDraft",
    "ShiftStatus",
    "ApplicationStatus",
    "ShiftStateTransition",
    "PendingChange",
    "Actor",
    "ActorRole",
    "ShiftEdge",
    "EDGE_RULES",
    "TERMINAL_STATUSES",
    "VALID_SHIFT_TRANSITIONS",
    # Lifecycle
    "ShiftLifecycle",
    "check_block_invariants",
    # Storage
    "ShiftStorage",
    "InMemoryShiftStorage",
]
