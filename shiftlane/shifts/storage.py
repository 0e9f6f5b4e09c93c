"""Shift storage layer.

The engine prescribes no storage format. Backends must offer read-one,
write-one with optimistic concurrency, an all-or-nothing multi-shift write,
and read-many-by-block.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from shiftlane.errors import VersionConflictError
from shiftlane.shifts.models import (
    ApplicationStatus,
    Shift,
    ShiftApplication,
    ShiftStateTransition,
    ShiftStatus,
    normalize_status,
)

logger = logging.getLogger(__name__)


class ShiftStorage(Protocol):
    """Protocol for shift persistence backends."""

    # Shifts
    def save_shift(self, shift: Shift) -> str:
        """Insert a new shift. Returns the shift ID."""
        ...

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        """Get a snapshot of a shift by ID."""
        ...

    def update_shift(self, shift: Shift, expected_version: Optional[int] = None) -> bool:
        """Write a shift if its stored version matches.

        Returns False if the shift does not exist. On success the stored
        version and ``shift.version`` are incremented.

        Raises:
            VersionConflictError: If another writer got there first.
        """
        ...

    def update_shifts(self, shifts: Sequence[Shift]) -> None:
        """Write several shifts at once, or none of them.

        Every shift's ``version`` is the version it was read at.

        Raises:
            VersionConflictError: If any stored version has moved on.
        """
        ...

    def list_shifts(
        self,
        status: Optional[ShiftStatus] = None,
        venue_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        block_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Shift]:
        """List shifts with optional filters, ordered by start."""
        ...

    def list_block(self, block_id: str) -> List[Shift]:
        """All shifts sharing a block ID, ordered by start."""
        ...

    # Applications
    def save_application(self, application: ShiftApplication) -> str:
        ...

    def get_application(self, application_id: str) -> Optional[ShiftApplication]:
        ...

    def list_applications(
        self,
        shift_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> List[ShiftApplication]:
        """List applications in application order."""
        ...

    def update_application_status(
        self, application_id: str, status: ApplicationStatus
    ) -> bool:
        ...

    # Transitions (audit log)
    def save_transition(self, transition: ShiftStateTransition) -> str:
        ...

    def get_transitions(self, shift_id: str) -> List[ShiftStateTransition]:
        ...


class InMemoryShiftStorage:
    """In-memory shift storage for testing and local development.

    Records are copied on the way in and out, so callers work on snapshots
    and an abandoned operation leaves nothing behind.
    """

    def __init__(self):
        self._shifts: Dict[str, Shift] = {}
        self._applications: Dict[str, ShiftApplication] = {}
        self._transitions: Dict[str, List[ShiftStateTransition]] = {}
        self._lock = threading.RLock()

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    # === Shifts ===

    def save_shift(self, shift: Shift) -> str:
        with self._lock:
            if shift.id in self._shifts:
                raise ValueError(f"Shift {shift.id} already exists")
            self._shifts[shift.id] = copy.deepcopy(shift)
            self._transitions.setdefault(shift.id, [])
        return shift.id

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        with self._lock:
            shift = self._shifts.get(shift_id)
            return copy.deepcopy(shift) if shift else None

    def update_shift(self, shift: Shift, expected_version: Optional[int] = None) -> bool:
        if expected_version is None:
            expected_version = shift.version
        with self._lock:
            current = self._shifts.get(shift.id)
            if current is None:
                return False
            if current.version != expected_version:
                raise VersionConflictError("shifts", shift.id, expected_version, current.version)
            shift.version = expected_version + 1
            self._shifts[shift.id] = copy.deepcopy(shift)
        return True

    def update_shifts(self, shifts: Sequence[Shift]) -> None:
        with self._lock:
            # Check every version before writing anything
            for shift in shifts:
                current = self._shifts.get(shift.id)
                actual = current.version if current else -1
                if actual != shift.version:
                    raise VersionConflictError("shifts", shift.id, shift.version, actual)
            for shift in shifts:
                shift.version += 1
                self._shifts[shift.id] = copy.deepcopy(shift)

    def list_shifts(
        self,
        status: Optional[ShiftStatus] = None,
        venue_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        block_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Shift]:
        with self._lock:
            shifts = list(self._shifts.values())

        if status is not None:
            status_val = normalize_status(status)
            shifts = [s for s in shifts if s.status == status_val]
        if venue_id is not None:
            shifts = [s for s in shifts if s.venue_id == venue_id]
        if worker_id is not None:
            shifts = [s for s in shifts if s.worker_id == worker_id]
        if block_id is not None:
            shifts = [s for s in shifts if s.block_id == block_id]

        shifts.sort(key=lambda s: (s.start, s.id))
        return [copy.deepcopy(s) for s in shifts[offset : offset + limit]]

    def list_block(self, block_id: str) -> List[Shift]:
        return self.list_shifts(block_id=block_id, limit=10_000)

    # === Applications ===

    def save_application(self, application: ShiftApplication) -> str:
        with self._lock:
            self._applications[application.id] = copy.deepcopy(application)
        return application.id

    def get_application(self, application_id: str) -> Optional[ShiftApplication]:
        app = self._applications.get(application_id)
        return copy.deepcopy(app) if app else None

    def list_applications(
        self,
        shift_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> List[ShiftApplication]:
        apps = list(self._applications.values())

        if shift_id is not None:
            apps = [a for a in apps if a.shift_id == shift_id]
        if worker_id is not None:
            apps = [a for a in apps if a.worker_id == worker_id]
        if status is not None:
            status_val = status.value if isinstance(status, ApplicationStatus) else status
            apps = [a for a in apps if a.status == status_val]

        # Dicts keep insertion order; a stable sort keeps ties in that order
        apps.sort(key=lambda a: a.applied_at or self._utc_now())
        return [copy.deepcopy(a) for a in apps]

    def update_application_status(
        self, application_id: str, status: ApplicationStatus
    ) -> bool:
        with self._lock:
            app = self._applications.get(application_id)
            if not app:
                return False
            app.status = status.value if isinstance(status, ApplicationStatus) else status
            app.updated_at = self._utc_now()
        return True

    # === Transitions ===

    def save_transition(self, transition: ShiftStateTransition) -> str:
        with self._lock:
            self._transitions.setdefault(transition.shift_id, []).append(transition)
        return transition.id

    def get_transitions(self, shift_id: str) -> List[ShiftStateTransition]:
        transitions = self._transitions.get(shift_id, [])
        return sorted(transitions, key=lambda t: t.created_at or self._utc_now())
