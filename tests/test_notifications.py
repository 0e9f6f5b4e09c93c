"""Tests for notification events and notifiers."""

import logging

from shiftlane.notifications import (
    InMemoryNotifier,
    LoggingNotifier,
    NotificationEvent,
    NotificationType,
    dispatch,
)


def _event(recipient="worker-a", type_=NotificationType.SHIFT_OFFER):
    return NotificationEvent(
        type=type_,
        recipient_id=recipient,
        shift_id="shift-1",
        actor_id="venue-1",
        payload={"total_cost": 210.0},
    )


class TestNotifiers:
    """Tests for the bundled notifiers."""

    def test_in_memory_collects(self):
        notifier = InMemoryNotifier()
        dispatch(notifier, [_event(), _event("venue-1", NotificationType.SHIFT_ACCEPTED)])
        assert notifier.types() == [NotificationType.SHIFT_OFFER, NotificationType.SHIFT_ACCEPTED]
        assert len(notifier.for_recipient("venue-1")) == 1

    def test_logging_notifier(self, caplog):
        with caplog.at_level(logging.INFO, logger="shiftlane.notifications"):
            LoggingNotifier().notify(_event())
        assert "notify shift_offer -> worker-a" in caplog.text

    def test_failures_do_not_stop_later_events(self, caplog):
        delivered = []

        class FlakyNotifier:
            def notify(self, event):
                if event.recipient_id == "bad":
                    raise ConnectionError("socket closed")
                delivered.append(event.recipient_id)

        with caplog.at_level(logging.WARNING, logger="shiftlane.notifications"):
            dispatch(FlakyNotifier(), [_event("bad"), _event("good")])

        assert delivered == ["good"]
        assert "Swallowed ConnectionError" in caplog.text

    def test_to_dict(self):
        data = _event().to_dict()
        assert data["type"] == "shift_offer"
        assert data["payload"] == {"total_cost": 210.0}
