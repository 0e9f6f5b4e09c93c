"""Shift lifecycle state machine.

ShiftLifecycle is the only code that changes a shift's status. Every
operation takes an explicit :class:`~shiftlane.shifts.models.Actor` and is a
single read-modify-write against one shift, or against a block of shifts
that are all validated before any of them is written.

Guards run in a fixed order: the shift exists, it is not in a terminal
state, the actor's role may trigger the edge, the actor is the right party,
and the edge is defined from the current status.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from shiftlane.config import PayrollConfig
from shiftlane.errors import (
    BlockInvariantError,
    ConflictingOffer,
    InvalidShiftWindow,
    InvalidTransition,
    ShiftEngineError,
    ShiftNotFound,
    TerminalStateViolation,
    UnauthorizedTransition,
    VersionConflictError,
)
from shiftlane.notifications import NotificationEvent, NotificationType, Notifier, NullNotifier, dispatch
from shiftlane.payroll.costs import Quote
from shiftlane.payroll.duration import gross_minutes, validate_increment
from shiftlane.shifts.models import (
    EDGE_RULES,
    ActorRole,
    Actor,
    ApplicationStatus,
    PendingChange,
    Shift,
    ShiftApplication,
    ShiftEdge,
    ShiftStateTransition,
    ShiftStatus,
)
from shiftlane.shifts.storage import ShiftStorage

logger = logging.getLogger(__name__)

# Re-prices a shift inside the same write as an offer or committed change
Repricer = Callable[[Shift], Optional[Quote]]

# Statuses in which a worker holds the shift
_HELD_STATUSES = frozenset(
    {
        ShiftStatus.OFFERED_TO_WORKER.value,
        ShiftStatus.CONFIRMED.value,
        ShiftStatus.PENDING_CHANGES.value,
    }
)
_ASSIGNED_STATUSES = frozenset({ShiftStatus.CONFIRMED.value, ShiftStatus.PENDING_CHANGES.value})

# Worker edges that only the offered worker may trigger
_OFFERED_WORKER_EDGES = frozenset({ShiftEdge.ACCEPT_OFFER, ShiftEdge.DECLINE_OFFER})
# Worker edges that only the assigned worker may trigger
_ASSIGNED_WORKER_EDGES = frozenset(
    {
        ShiftEdge.ACCEPT_CHANGES,
        ShiftEdge.DECLINE_CHANGES,
        ShiftEdge.SUBMIT_WORKER_REVIEW,
        ShiftEdge.CANCEL,
    }
)


@dataclass
class _Change:
    """A validated mutation waiting to be written."""

    shift: Shift
    from_status: str
    edge: ShiftEdge
    metadata: Dict = field(default_factory=dict)
    events: List[NotificationEvent] = field(default_factory=list)


def check_block_invariants(shifts: Sequence[Shift]) -> None:
    """Block members share rate and role unless marked independent pay.

    Raises:
        BlockInvariantError: If members disagree.
    """
    linked = [s for s in shifts if not s.independent_pay]
    if len(linked) < 2:
        return
    roles = {s.role for s in linked}
    rates = {s.hourly_rate for s in linked}
    if len(roles) > 1:
        raise BlockInvariantError(
            f"Shifts in block {linked[0].block_id} have different roles: {sorted(roles)}",
            shift_id=linked[0].id,
        )
    if len(rates) > 1:
        raise BlockInvariantError(
            f"Shifts in block {linked[0].block_id} have different pay rates: {sorted(rates)}",
            shift_id=linked[0].id,
            detail="mark the block independent_pay to allow per-shift rates",
        )


def validate_rating(rating: int) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValueError(f"Rating must be an integer from 1 to 5, got {rating!r}")
    return rating


class ShiftLifecycle:
    """The authoritative shift state machine.

    Args:
        storage: Shift persistence backend.
        notifier: Receives one event per applied transition.
        config: Time rules (increment, maximum shift length).
        now_fn: Clock; defaults to UTC now.
    """

    def __init__(
        self,
        storage: ShiftStorage,
        notifier: Optional[Notifier] = None,
        config: Optional[PayrollConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.notifier = notifier or NullNotifier()
        self.config = config or PayrollConfig()
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._now_fn()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_shift(self, shift_id: str) -> Shift:
        shift = self.storage.get_shift(shift_id)
        if shift is None:
            raise ShiftNotFound(f"Shift {shift_id} not found", shift_id=shift_id)
        return shift

    def get_applications(self, shift_id: str) -> List[ShiftApplication]:
        return self.storage.list_applications(shift_id=shift_id)

    def get_history(self, shift_id: str) -> List[ShiftStateTransition]:
        return self.storage.get_transitions(shift_id)

    def get_block(self, block_id: str) -> List[Shift]:
        return self.storage.list_block(block_id)

    # =========================================================================
    # Guards
    # =========================================================================

    def _reject(self, exc: ShiftEngineError, edge: ShiftEdge) -> ShiftEngineError:
        logger.debug(
            "Rejected %s on shift %s by %s: %s (%s)",
            edge.value,
            exc.shift_id,
            exc.actor_id,
            type(exc).__name__,
            exc.message,
        )
        return exc

    def _check_terminal(self, shift: Shift, edge: ShiftEdge, actor: Actor) -> None:
        if shift.is_terminal:
            raise self._reject(
                TerminalStateViolation(
                    f"Shift {shift.id} is {shift.status}; no further transitions are permitted",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=edge.value,
                ),
                edge,
            )

    def _check_actor(self, shift: Shift, edge: ShiftEdge, actor: Actor) -> None:
        _, roles = EDGE_RULES[edge]
        if actor.role not in roles:
            allowed = " or ".join(sorted(r.value for r in roles))
            raise self._reject(
                UnauthorizedTransition(
                    f"Only a {allowed} can {edge.value} (shift {shift.id}, actor "
                    f"{actor.role.value} {actor.id})",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=edge.value,
                ),
                edge,
            )

        if actor.role == ActorRole.VENUE and actor.id != shift.venue_id:
            message = f"Only the venue that posted shift {shift.id} can {edge.value} it"
        elif (
            actor.role == ActorRole.WORKER
            and edge in _OFFERED_WORKER_EDGES
            and actor.id != shift.proposed_worker_id
        ):
            message = f"Only the offered worker can {edge.value} on shift {shift.id}"
        elif (
            actor.role == ActorRole.WORKER
            and edge in _ASSIGNED_WORKER_EDGES
            and actor.id != shift.worker_id
        ):
            message = f"Only the assigned worker can {edge.value} on shift {shift.id}"
        elif (
            actor.role == ActorRole.WORKER
            and edge == ShiftEdge.CANCEL
            and shift.status not in _ASSIGNED_STATUSES
        ):
            message = f"Worker {actor.id} is not assigned to shift {shift.id} and cannot cancel it"
        else:
            return

        raise self._reject(
            UnauthorizedTransition(message, shift_id=shift.id, actor_id=actor.id, detail=edge.value),
            edge,
        )

    def _check_status(self, shift: Shift, edge: ShiftEdge, actor: Actor) -> None:
        from_statuses, _ = EDGE_RULES[edge]
        if ShiftStatus(shift.status) not in from_statuses:
            raise self._reject(
                InvalidTransition(
                    f"Cannot {edge.value} shift {shift.id} while it is {shift.status}",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=edge.value,
                ),
                edge,
            )

    def _guard(self, shift: Shift, edge: ShiftEdge, actor: Actor) -> None:
        self._check_terminal(shift, edge, actor)
        self._check_actor(shift, edge, actor)
        self._check_status(shift, edge, actor)

    def check(self, shift_id: str, edge: ShiftEdge, actor: Actor) -> Shift:
        """Run the guards for an edge without applying it. Returns the shift."""
        shift = self.get_shift(shift_id)
        self._guard(shift, edge, actor)
        return shift

    # =========================================================================
    # Writes
    # =========================================================================

    def _transition(self, change: _Change, actor: Actor) -> ShiftStateTransition:
        now = self.now()
        return ShiftStateTransition(
            id=str(uuid.uuid4()),
            shift_id=change.shift.id,
            from_status=change.from_status,
            to_status=change.shift.status,
            actor_id=actor.id,
            actor_role=actor.role.value,
            edge=change.edge.value,
            metadata=dict(change.metadata),
            created_at=now,
        )

    def _commit(self, change: _Change, actor: Actor) -> Shift:
        shift = change.shift
        shift.updated_at = self.now()
        if not self.storage.update_shift(shift):
            raise ShiftNotFound(f"Shift {shift.id} not found", shift_id=shift.id)
        self._after_commit([change], actor)
        return shift

    def _commit_many(self, changes: List[_Change], actor: Actor) -> List[Shift]:
        now = self.now()
        for change in changes:
            change.shift.updated_at = now
        self.storage.update_shifts([c.shift for c in changes])
        self._after_commit(changes, actor)
        return [c.shift for c in changes]

    def _after_commit(self, changes: List[_Change], actor: Actor) -> None:
        for change in changes:
            self.storage.save_transition(self._transition(change, actor))
            logger.info(
                "Shift %s: %s -> %s (%s by %s %s)",
                change.shift.id,
                change.from_status,
                change.shift.status,
                change.edge.value,
                actor.role.value,
                actor.id,
            )
        for change in changes:
            dispatch(self.notifier, change.events)

    def _event(
        self,
        type_: NotificationType,
        recipient_id: Optional[str],
        shift: Shift,
        actor: Actor,
        **payload,
    ) -> List[NotificationEvent]:
        if not recipient_id:
            return []
        return [
            NotificationEvent(
                type=type_,
                recipient_id=recipient_id,
                shift_id=shift.id,
                actor_id=actor.id,
                payload=payload,
                created_at=self.now(),
            )
        ]

    def _set_application_status(
        self, shift_id: str, worker_id: str, status: ApplicationStatus, only_actionable: bool = True
    ) -> Optional[ShiftApplication]:
        for app in self.storage.list_applications(shift_id=shift_id, worker_id=worker_id):
            if only_actionable and not app.is_actionable:
                continue
            self.storage.update_application_status(app.id, status)
            app.status = status.value
            return app
        return None

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, shift: Shift, actor: Actor, metadata: Optional[Dict] = None) -> Shift:
        """Record a new shift in ``posted`` or ``offered_to_worker``."""
        return self.create_many([shift], actor, metadata)[0]

    def create_many(
        self, shifts: Sequence[Shift], actor: Actor, metadata: Optional[Dict] = None
    ) -> List[Shift]:
        """Record new shifts, checking block invariants first."""
        if actor.role != ActorRole.VENUE:
            raise UnauthorizedTransition(
                f"Only a venue can create shifts (actor {actor.role.value} {actor.id})",
                actor_id=actor.id,
                detail=ShiftEdge.CREATE.value,
            )
        initial = {ShiftStatus.POSTED.value, ShiftStatus.OFFERED_TO_WORKER.value}
        for shift in shifts:
            if shift.venue_id != actor.id:
                raise UnauthorizedTransition(
                    f"Venue {actor.id} cannot create a shift for venue {shift.venue_id}",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=ShiftEdge.CREATE.value,
                )
            if shift.status not in initial:
                raise InvalidTransition(
                    f"Shifts are created as posted or offered_to_worker, not {shift.status}",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=ShiftEdge.CREATE.value,
                )
            if shift.status == ShiftStatus.OFFERED_TO_WORKER.value and not shift.proposed_worker_id:
                raise InvalidTransition(
                    "A shift created as offered_to_worker must name the offered worker",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=ShiftEdge.CREATE.value,
                )
            increment = self.config.time_increment_minutes
            validate_increment(shift.start, "start", increment)
            validate_increment(shift.end, "end", increment)

        by_block: Dict[str, List[Shift]] = {}
        for shift in shifts:
            if shift.block_id:
                by_block.setdefault(shift.block_id, []).append(shift)
        for block_id, members in by_block.items():
            check_block_invariants(self.storage.list_block(block_id) + members)

        now = self.now()
        created = []
        for shift in shifts:
            shift.created_at = shift.created_at or now
            shift.updated_at = now
            if shift.status == ShiftStatus.OFFERED_TO_WORKER.value:
                shift.offered_at = now
            self.storage.save_shift(shift)
            change = _Change(
                shift=shift,
                from_status=None,
                edge=ShiftEdge.CREATE,
                metadata=dict(metadata or {}),
            )
            if shift.proposed_worker_id:
                change.events = self._event(
                    NotificationType.SHIFT_OFFER, shift.proposed_worker_id, shift, actor, direct=True
                )
            else:
                change.events = self._event(
                    NotificationType.NEW_SHIFT_POSTED, shift.venue_id, shift, actor
                )
            self._after_commit([change], actor)
            created.append(shift)
        return created

    # =========================================================================
    # Applications
    # =========================================================================

    def apply(self, shift_id: str, worker: Actor) -> Tuple[Shift, ShiftApplication]:
        """Add a worker to a posted shift's applicants.

        Re-applying is a no-op that returns the existing application.
        """
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.APPLY, worker)

        if worker.id in shift.applicant_ids:
            existing = self.storage.list_applications(shift_id=shift.id, worker_id=worker.id)
            if existing:
                return shift, existing[-1]

        now = self.now()
        from_status = shift.status
        shift.applicant_ids.append(worker.id)
        application = ShiftApplication(
            id=str(uuid.uuid4()),
            shift_id=shift.id,
            worker_id=worker.id,
            status=ApplicationStatus.PENDING.value,
            applied_at=now,
            updated_at=now,
        )
        change = _Change(
            shift=shift,
            from_status=from_status,
            edge=ShiftEdge.APPLY,
            metadata={"application_id": application.id, "worker_id": worker.id},
            events=self._event(
                NotificationType.APPLICATION_UPDATE,
                shift.venue_id,
                shift,
                worker,
                application_id=application.id,
                status=application.status,
            ),
        )
        shift.updated_at = now
        if not self.storage.update_shift(shift):
            raise ShiftNotFound(f"Shift {shift.id} not found", shift_id=shift.id)
        self.storage.save_application(application)
        self._after_commit([change], worker)
        return shift, application

    def withdraw_application(self, shift_id: str, worker: Actor) -> ShiftApplication:
        """Take back a pending application on a posted shift."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.WITHDRAW_APPLICATION, worker)

        apps = [
            a
            for a in self.storage.list_applications(shift_id=shift.id, worker_id=worker.id)
            if a.is_actionable
        ]
        if not apps:
            raise InvalidTransition(
                f"Worker {worker.id} has no pending application on shift {shift.id}",
                shift_id=shift.id,
                actor_id=worker.id,
                detail=ShiftEdge.WITHDRAW_APPLICATION.value,
            )

        from_status = shift.status
        shift.applicant_ids = [w for w in shift.applicant_ids if w != worker.id]
        self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.WITHDRAW_APPLICATION,
                metadata={"worker_id": worker.id},
            ),
            worker,
        )
        app = apps[0]
        self.storage.update_application_status(app.id, ApplicationStatus.WITHDRAWN)
        app.status = ApplicationStatus.WITHDRAWN.value
        return app

    # =========================================================================
    # Offers
    # =========================================================================

    def _plan_offer(
        self,
        shift: Shift,
        venue: Actor,
        worker_id: str,
        direct: bool,
        cascade: bool,
        repricer: Optional[Repricer],
    ) -> Optional[_Change]:
        edge = ShiftEdge.DIRECT_OFFER if direct else ShiftEdge.OFFER

        if cascade and shift.status not in _HELD_STATUSES | {ShiftStatus.POSTED.value}:
            # Completed, settled or cancelled members stay as they are
            return None

        self._check_terminal(shift, edge, venue)
        self._check_actor(shift, edge, venue)

        holder = shift.holder_id
        if holder is not None and holder != worker_id:
            raise self._reject(
                ConflictingOffer(
                    f"Shift {shift.id} is already {shift.status} with worker {holder}",
                    shift_id=shift.id,
                    actor_id=venue.id,
                    detail=f"cannot also offer to {worker_id}",
                ),
                edge,
            )
        if holder == worker_id:
            return None

        self._check_status(shift, edge, venue)

        if not direct and not any(
            a.is_actionable
            for a in self.storage.list_applications(shift_id=shift.id, worker_id=worker_id)
        ):
            raise self._reject(
                InvalidTransition(
                    f"Worker {worker_id} has not applied to shift {shift.id}",
                    shift_id=shift.id,
                    actor_id=venue.id,
                    detail="use a direct offer for workers who have not applied",
                ),
                edge,
            )

        from_status = shift.status
        shift.status = ShiftStatus.OFFERED_TO_WORKER.value
        shift.proposed_worker_id = worker_id
        shift.offered_at = self.now()
        if repricer is not None:
            quote = repricer(shift)
            if quote is not None:
                shift.apply_quote(quote)

        return _Change(
            shift=shift,
            from_status=from_status,
            edge=edge,
            metadata={"worker_id": worker_id, "total_cost": shift.total_cost},
            events=self._event(
                NotificationType.SHIFT_OFFER,
                worker_id,
                shift,
                venue,
                total_cost=shift.total_cost,
                block_id=shift.block_id,
            ),
        )

    def offer(
        self,
        shift_id: str,
        venue: Actor,
        worker_id: str,
        *,
        direct: bool = False,
        per_shift: bool = False,
        repricer: Optional[Repricer] = None,
    ) -> List[Shift]:
        """Offer a shift to one worker.

        A block member cascades to the whole block unless ``per_shift`` is
        set; block offers are targeted and skip the applicant check. All
        members are validated before any is written.

        Returns:
            The shifts that changed (empty if the worker already holds them).

        Raises:
            ConflictingOffer: Another worker holds an offer or assignment.
        """
        shift = self.get_shift(shift_id)
        if shift.block_id and not per_shift:
            members = self.storage.list_block(shift.block_id)
            self._check_terminal(shift, ShiftEdge.DIRECT_OFFER, venue)
            return self._offer_members(members, venue, worker_id, direct=True, repricer=repricer)
        return self._offer_members([shift], venue, worker_id, direct=direct, repricer=repricer)

    def _offer_members(
        self,
        members: List[Shift],
        venue: Actor,
        worker_id: str,
        direct: bool,
        repricer: Optional[Repricer],
    ) -> List[Shift]:
        cascade = len(members) > 1
        changes = []
        for member in members:
            change = self._plan_offer(member, venue, worker_id, direct, cascade, repricer)
            if change is not None:
                changes.append(change)

        if cascade and not changes and not any(m.holder_id == worker_id for m in members):
            raise InvalidTransition(
                f"No shift in block {members[0].block_id} can be offered",
                shift_id=members[0].id,
                actor_id=venue.id,
                detail=ShiftEdge.DIRECT_OFFER.value,
            )
        if not changes:
            return []
        self._check_blocks_after(changes)

        try:
            if len(changes) == 1:
                shifts = [self._commit(changes[0], venue)]
            else:
                shifts = self._commit_many(changes, venue)
        except VersionConflictError as exc:
            raise ConflictingOffer(
                f"Shift {exc.record_id} changed while the offer was being made",
                shift_id=exc.record_id,
                actor_id=venue.id,
                detail=str(exc),
            ) from exc

        for shift in shifts:
            self._set_application_status(shift.id, worker_id, ApplicationStatus.OFFERED)
        return shifts

    def _check_blocks_after(self, changes: List[_Change]) -> None:
        """Check block invariants on the state the changes would leave behind."""
        changed = {c.shift.id: c.shift for c in changes}
        for block_id in {c.shift.block_id for c in changes if c.shift.block_id}:
            members = [changed.get(m.id, m) for m in self.storage.list_block(block_id)]
            check_block_invariants(members)

    def accept_offer(self, shift_id: str, worker: Actor) -> Shift:
        """The offered worker takes the shift; every other application is superseded."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.ACCEPT_OFFER, worker)

        from_status = shift.status
        shift.status = ShiftStatus.CONFIRMED.value
        shift.worker_id = worker.id
        shift.proposed_worker_id = None
        shift.confirmed_at = self.now()

        self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.ACCEPT_OFFER,
                metadata={"worker_id": worker.id},
                events=self._event(NotificationType.SHIFT_ACCEPTED, shift.venue_id, shift, worker),
            ),
            worker,
        )

        superseded = []
        for app in self.storage.list_applications(shift_id=shift.id):
            if not app.is_actionable:
                continue
            if app.worker_id == worker.id:
                self.storage.update_application_status(app.id, ApplicationStatus.ACCEPTED)
            else:
                self.storage.update_application_status(app.id, ApplicationStatus.REJECTED)
                superseded.append(app.worker_id)

        events = []
        for worker_id in superseded:
            events += self._event(
                NotificationType.APPLICATION_UPDATE,
                worker_id,
                shift,
                worker,
                status=ApplicationStatus.REJECTED.value,
            )
        dispatch(self.notifier, events)
        return shift

    def decline_offer(self, shift_id: str, worker: Actor, reason: Optional[str] = None) -> Shift:
        """The offered worker turns the shift down; it reopens to applicants."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.DECLINE_OFFER, worker)

        from_status = shift.status
        shift.status = ShiftStatus.POSTED.value
        shift.proposed_worker_id = None
        shift.offered_at = None

        self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.DECLINE_OFFER,
                metadata={"worker_id": worker.id, "reason": reason},
                events=self._event(
                    NotificationType.SHIFT_DECLINED, shift.venue_id, shift, worker, reason=reason
                ),
            ),
            worker,
        )
        self._set_application_status(shift.id, worker.id, ApplicationStatus.REJECTED)
        return shift

    def withdraw_offer(self, shift_id: str, venue: Actor, reason: Optional[str] = None) -> Shift:
        """The venue takes back an outstanding offer; the shift reopens."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.WITHDRAW_OFFER, venue)

        worker_id = shift.proposed_worker_id
        from_status = shift.status
        shift.status = ShiftStatus.POSTED.value
        shift.proposed_worker_id = None
        shift.offered_at = None

        self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.WITHDRAW_OFFER,
                metadata={"worker_id": worker_id, "reason": reason},
                events=self._event(
                    NotificationType.SHIFT_OFFER_WITHDRAWN, worker_id, shift, venue, reason=reason
                ),
            ),
            venue,
        )
        if worker_id:
            self._set_application_status(shift.id, worker_id, ApplicationStatus.PENDING)
        return shift

    # =========================================================================
    # Change requests
    # =========================================================================

    def _normalize_window(
        self, shift: Shift, venue: Actor, start: datetime, end: datetime, break_minutes: int
    ) -> Tuple[datetime, datetime]:
        increment = self.config.time_increment_minutes
        validate_increment(start, "start", increment)
        validate_increment(end, "end", increment)
        if end <= start:
            end = end + timedelta(days=1)
        minutes = gross_minutes(start, end, self.config.max_shift_hours)
        if break_minutes < 0 or break_minutes > minutes:
            raise InvalidShiftWindow(
                f"Break of {break_minutes} minutes does not fit a {minutes}-minute shift",
                shift_id=shift.id,
                actor_id=venue.id,
            )
        return start, end

    def request_changes(
        self,
        shift_id: str,
        venue: Actor,
        start: datetime,
        end: datetime,
        break_minutes: int = 0,
    ) -> Shift:
        """Propose a new time/break. The authoritative times stay put until accepted."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.REQUEST_CHANGES, venue)
        start, end = self._normalize_window(shift, venue, start, end, break_minutes)

        from_status = shift.status
        shift.status = ShiftStatus.PENDING_CHANGES.value
        shift.pending_change = PendingChange(
            start=start,
            end=end,
            break_minutes=break_minutes,
            requested_by=venue.id,
            requested_at=self.now(),
        )
        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.REQUEST_CHANGES,
                metadata={"pending_change": shift.pending_change.to_dict()},
                events=self._event(
                    NotificationType.SHIFT_ADJUSTMENT,
                    shift.worker_id,
                    shift,
                    venue,
                    pending_change=shift.pending_change.to_dict(),
                ),
            ),
            venue,
        )

    def accept_changes(
        self, shift_id: str, worker: Actor, repricer: Optional[Repricer] = None
    ) -> Shift:
        """Commit the pending change into the authoritative start/end/break."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.ACCEPT_CHANGES, worker)

        change = shift.pending_change
        if change is None:
            raise InvalidTransition(
                f"Shift {shift.id} has no pending change to accept",
                shift_id=shift.id,
                actor_id=worker.id,
                detail=ShiftEdge.ACCEPT_CHANGES.value,
            )

        from_status = shift.status
        previous = {
            "start": shift.start.isoformat(),
            "end": shift.end.isoformat(),
            "break_minutes": shift.break_minutes,
        }
        shift.start = change.start
        shift.end = change.end
        shift.break_minutes = change.break_minutes
        shift.pending_change = None
        shift.status = ShiftStatus.CONFIRMED.value
        if repricer is not None:
            quote = repricer(shift)
            if quote is not None:
                shift.apply_quote(quote)

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.ACCEPT_CHANGES,
                metadata={"previous": previous},
                events=self._event(
                    NotificationType.SHIFT_ADJUSTMENT_ACCEPTANCE, shift.venue_id, shift, worker
                ),
            ),
            worker,
        )

    def decline_changes(self, shift_id: str, worker: Actor) -> Shift:
        """Discard the pending change; the authoritative time is unchanged."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.DECLINE_CHANGES, worker)

        from_status = shift.status
        discarded = shift.pending_change.to_dict() if shift.pending_change else None
        shift.pending_change = None
        shift.status = ShiftStatus.CONFIRMED.value

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.DECLINE_CHANGES,
                metadata={"discarded": discarded},
                events=self._event(
                    NotificationType.SHIFT_ADJUSTMENT_DECLINED, shift.venue_id, shift, worker
                ),
            ),
            worker,
        )

    def expire_changes(self, shift_id: str, system: Actor) -> Shift:
        """Drop a proposal the worker never answered once the shift has ended.

        The shift goes back to ``confirmed`` on its authoritative times.
        """
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.EXPIRE_CHANGES, system)
        if self.now() < shift.end:
            raise self._reject(
                InvalidTransition(
                    f"Shift {shift.id} has not ended yet (ends {shift.end.isoformat()})",
                    shift_id=shift.id,
                    actor_id=system.id,
                    detail=ShiftEdge.EXPIRE_CHANGES.value,
                ),
                ShiftEdge.EXPIRE_CHANGES,
            )

        from_status = shift.status
        discarded = shift.pending_change.to_dict() if shift.pending_change else None
        shift.pending_change = None
        shift.status = ShiftStatus.CONFIRMED.value

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.EXPIRE_CHANGES,
                metadata={"discarded": discarded},
                events=self._event(
                    NotificationType.SHIFT_ADJUSTMENT_DECLINED,
                    shift.venue_id,
                    shift,
                    system,
                    reason="expired",
                ),
            ),
            system,
        )

    # =========================================================================
    # Cancellation
    # =========================================================================

    def _plan_cancel(
        self, shift: Shift, actor: Actor, reason: Optional[str], cascade: bool
    ) -> Optional[_Change]:
        edge = ShiftEdge.CANCEL
        from_statuses, _ = EDGE_RULES[edge]
        if cascade:
            if shift.is_terminal or ShiftStatus(shift.status) not in from_statuses:
                return None
            if actor.role == ActorRole.WORKER and shift.worker_id != actor.id:
                return None
            if shift.status in _ASSIGNED_STATUSES and self.now() >= shift.start:
                return None

        self._guard(shift, edge, actor)
        if shift.status in _ASSIGNED_STATUSES and self.now() >= shift.start:
            raise self._reject(
                InvalidTransition(
                    f"Shift {shift.id} has already started and can no longer be cancelled",
                    shift_id=shift.id,
                    actor_id=actor.id,
                    detail=edge.value,
                ),
                edge,
            )

        holder = shift.holder_id
        from_status = shift.status
        shift.status = ShiftStatus.CANCELLED.value
        shift.cancelled_by = actor.id
        shift.cancel_reason = reason
        shift.cancelled_at = self.now()
        shift.pending_change = None

        if actor.role == ActorRole.WORKER:
            events = self._event(
                NotificationType.SHIFT_CANCELLED_BY_WORKER, shift.venue_id, shift, actor, reason=reason
            )
        else:
            events = self._event(
                NotificationType.SHIFT_CANCELLED_BY_VENUE, holder, shift, actor, reason=reason
            )
        return _Change(
            shift=shift,
            from_status=from_status,
            edge=edge,
            metadata={"reason": reason, "cancelled_by": actor.role.value},
            events=events,
        )

    def cancel(
        self,
        shift_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        *,
        per_shift: bool = False,
    ) -> List[Shift]:
        """Cancel a shift, or its whole block unless ``per_shift`` is set.

        Cancellation is terminal. Assigned shifts can only be cancelled before
        they start. Block members already completed or cancelled are left
        alone.
        """
        shift = self.get_shift(shift_id)
        if shift.block_id and not per_shift:
            members = self.storage.list_block(shift.block_id)
            # The requested shift gets the full guard; siblings are best effort
            origin = self._plan_cancel(shift, actor, reason, cascade=False)
            changes = [origin]
            for member in members:
                if member.id == shift.id:
                    continue
                change = self._plan_cancel(member, actor, reason, cascade=True)
                if change is not None:
                    changes.append(change)
            shifts = self._commit_many(changes, actor)
        else:
            shifts = [self._commit(self._plan_cancel(shift, actor, reason, cascade=False), actor)]

        for cancelled in shifts:
            for app in self.storage.list_applications(shift_id=cancelled.id):
                if app.is_actionable:
                    self.storage.update_application_status(app.id, ApplicationStatus.REJECTED)
        return shifts

    # =========================================================================
    # Completion and settlement
    # =========================================================================

    def complete(self, shift_id: str, system: Actor) -> Shift:
        """Mark a confirmed shift completed once its end time has passed."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.COMPLETE, system)
        if self.now() < shift.end:
            raise self._reject(
                InvalidTransition(
                    f"Shift {shift.id} has not ended yet (ends {shift.end.isoformat()})",
                    shift_id=shift.id,
                    actor_id=system.id,
                    detail=ShiftEdge.COMPLETE.value,
                ),
                ShiftEdge.COMPLETE,
            )

        from_status = shift.status
        shift.status = ShiftStatus.COMPLETED.value
        shift.completed_at = self.now()
        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.COMPLETE,
                events=self._event(NotificationType.SHIFT_COMPLETED, shift.venue_id, shift, system),
            ),
            system,
        )

    def complete_due(self, system: Actor) -> List[Shift]:
        """Complete every assigned shift whose end time has passed.

        Unanswered change proposals on ended shifts are expired first, so
        those shifts complete on their authoritative times.
        """
        now = self.now()
        completed = []
        due = [
            shift
            for status in (ShiftStatus.CONFIRMED, ShiftStatus.PENDING_CHANGES)
            for shift in self.storage.list_shifts(status=status, limit=100_000)
            if shift.end <= now
        ]
        for shift in due:
            try:
                if shift.status == ShiftStatus.PENDING_CHANGES.value:
                    self.expire_changes(shift.id, system)
                completed.append(self.complete(shift.id, system))
            except VersionConflictError as exc:
                logger.warning("Skipped completing shift %s: %s", shift.id, exc)
        if completed:
            logger.info("Completed %d due shifts", len(completed))
        return completed

    def finalize(
        self,
        shift_id: str,
        venue: Actor,
        *,
        final_start: datetime,
        final_end: datetime,
        final_break_minutes: int,
        quote: Quote,
        invoice_id: str,
        rating: int,
        review_text: str = "",
    ) -> Shift:
        """Record settled hours, the venue's review and the invoice."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.FINALIZE, venue)
        validate_rating(rating)

        from_status = shift.status
        now = self.now()
        shift.final_start = final_start
        shift.final_end = final_end
        shift.final_break_minutes = final_break_minutes
        shift.final_hours = quote.hours
        shift.apply_quote(quote)
        shift.invoice_id = invoice_id
        shift.venue_review = {"rating": rating, "comment": review_text, "created_at": now.isoformat()}
        shift.status = ShiftStatus.PENDING_PAYMENT.value
        shift.finalized_at = now

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.FINALIZE,
                metadata={"invoice_id": invoice_id, "final_hours": quote.hours},
                events=self._event(
                    NotificationType.INVOICE_GENERATED,
                    shift.worker_id,
                    shift,
                    venue,
                    invoice_id=invoice_id,
                    rating=rating,
                ),
            ),
            venue,
        )

    def settle_payout(self, shift_id: str, system: Actor, request_review: bool = True) -> Shift:
        """Payout settled: ask the worker for a review, or close the shift as paid."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.SETTLE_PAYOUT, system)

        from_status = shift.status
        if request_review:
            shift.status = ShiftStatus.PENDING_WORKER_REVIEW.value
        else:
            shift.status = ShiftStatus.PAID.value
            shift.paid_at = self.now()

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.SETTLE_PAYOUT,
                metadata={"request_review": request_review},
                events=self._event(
                    NotificationType.PAYOUT_SETTLED,
                    shift.worker_id,
                    shift,
                    system,
                    invoice_id=shift.invoice_id,
                ),
            ),
            system,
        )

    def submit_worker_review(
        self, shift_id: str, worker: Actor, rating: int, comment: str = ""
    ) -> Shift:
        """The worker reviews the venue; the shift is closed as paid."""
        shift = self.get_shift(shift_id)
        self._guard(shift, ShiftEdge.SUBMIT_WORKER_REVIEW, worker)
        validate_rating(rating)

        from_status = shift.status
        now = self.now()
        shift.worker_review = {"rating": rating, "comment": comment, "created_at": now.isoformat()}
        shift.status = ShiftStatus.PAID.value
        shift.paid_at = now

        return self._commit(
            _Change(
                shift=shift,
                from_status=from_status,
                edge=ShiftEdge.SUBMIT_WORKER_REVIEW,
                metadata={"rating": rating},
                events=self._event(
                    NotificationType.REVIEW_RECEIVED, shift.venue_id, shift, worker, rating=rating
                ),
            ),
            worker,
        )
