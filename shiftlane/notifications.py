"""Notification events emitted on lifecycle transitions.

Delivery (push, in-app, email) lives outside the engine. Notifiers are
fire-and-forget: a failing notifier never changes the outcome of a
transition.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    NEW_SHIFT_POSTED = "new_shift_posted"
    APPLICATION_UPDATE = "application_update"
    SHIFT_OFFER = "shift_offer"
    SHIFT_OFFER_WITHDRAWN = "shift_offer_withdrawn"
    SHIFT_ACCEPTED = "shift_accepted"
    SHIFT_DECLINED = "shift_declined"
    SHIFT_ADJUSTMENT = "shift_adjustment"
    SHIFT_ADJUSTMENT_ACCEPTANCE = "shift_adjustment_acceptance"
    SHIFT_ADJUSTMENT_DECLINED = "shift_adjustment_declined"
    SHIFT_CANCELLED_BY_VENUE = "shift_cancelled_by_venue"
    SHIFT_CANCELLED_BY_WORKER = "shift_cancelled_by_worker"
    SHIFT_COMPLETED = "shift_completed"
    INVOICE_GENERATED = "invoice_generated"
    PAYOUT_SETTLED = "payout_settled"
    REVIEW_RECEIVED = "review_received"


@dataclass(frozen=True)
class NotificationEvent:
    """One message for the counterpart of a transition."""

    type: NotificationType
    recipient_id: str
    shift_id: str
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "recipient_id": self.recipient_id,
            "shift_id": self.shift_id,
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
            "created_at": self.created_at.isoformat(),
        }


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...


class NullNotifier:
    """Drops every event."""

    def notify(self, event: NotificationEvent) -> None:
        return None


class LoggingNotifier:
    """Writes events to the log; handy for local runs and the CLI."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def notify(self, event: NotificationEvent) -> None:
        logger.log(
            self.level,
            "notify %s -> %s (shift %s, by %s)",
            event.type.value,
            event.recipient_id,
            event.shift_id,
            event.actor_id,
        )


class InMemoryNotifier:
    """Collects events for inspection in tests."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def for_recipient(self, recipient_id: str) -> List[NotificationEvent]:
        return [e for e in self.events if e.recipient_id == recipient_id]

    def types(self, shift_id: Optional[str] = None) -> List[NotificationType]:
        return [e.type for e in self.events if shift_id is None or e.shift_id == shift_id]


def dispatch(notifier: Notifier, events: List[NotificationEvent]) -> None:
    """Send events, logging and dropping any notifier failure."""
    for event in events:
        try:
            notifier.notify(event)
        except Exception as exc:
            logger.warning(
                "Swallowed %s from notifier for %s on shift %s: %s",
                type(exc).__name__,
                event.type.value,
                event.shift_id,
                exc,
            )
