"""
Pytest fixtures and test configuration for shiftlane tests.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional

import pytest

from shiftlane.config import PayrollConfig
from shiftlane.notifications import InMemoryNotifier
from shiftlane.payroll.costs import CostEngine
from shiftlane.payroll.invoice import InMemoryInvoiceLedger
from shiftlane.payroll.promo import InMemoryPromoCodeStorage, PromoCode, PromoType
from shiftlane.payroll.settlement import Settlement
from shiftlane.shifts.lifecycle import ShiftLifecycle
from shiftlane.shifts.models import Actor, ShiftDraft
from shiftlane.shifts.offers import OfferCoordinator
from shiftlane.shifts.storage import InMemoryShiftStorage

# Saturday morning; test shifts default to the following day
CLOCK_START = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock passed to the lifecycle as ``now_fn``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock():
    return FixedClock(CLOCK_START)


@pytest.fixture
def config():
    """Production fee schedule."""
    return PayrollConfig()


@pytest.fixture
def storage():
    """Create in-memory shift storage for testing."""
    return InMemoryShiftStorage()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def promo_codes():
    """Registry seeded with one code of each type."""
    return InMemoryPromoCodeStorage(
        [
            PromoCode(code="FREEJOB", type=PromoType.FREE_JOB_POSTING),
            PromoCode(code="SAVE10", type=PromoType.FEE_DISCOUNT_10),
            PromoCode(code="FREESHIFT", type=PromoType.FREE_SHIFT_POSTING),
        ]
    )


@pytest.fixture
def costs(config, promo_codes):
    return CostEngine(config, promo_codes=promo_codes)


@pytest.fixture
def lifecycle(storage, notifier, config, clock):
    return ShiftLifecycle(storage, notifier=notifier, config=config, now_fn=clock)


@pytest.fixture
def coordinator(lifecycle, costs):
    return OfferCoordinator(lifecycle, costs)


@pytest.fixture
def invoices():
    return InMemoryInvoiceLedger()


@pytest.fixture
def settlement(lifecycle, costs, invoices):
    return Settlement(lifecycle, costs, invoices)


@pytest.fixture
def venue():
    return Actor.venue("venue-1")


@pytest.fixture
def other_venue():
    return Actor.venue("venue-2")


@pytest.fixture
def worker_a():
    return Actor.worker("worker-a")


@pytest.fixture
def worker_b():
    return Actor.worker("worker-b")


@pytest.fixture
def system():
    return Actor.system()


@pytest.fixture
def make_draft():
    """Factory for drafts on the day after the test clock's date."""

    def _make(
        start: time = time(9, 0),
        end: time = time(17, 0),
        break_minutes: int = 30,
        hourly_rate: float = 25.0,
        role: str = "bartender",
        day_offset: int = 1,
        location: str = "Main bar",
        end_day_offset: Optional[int] = None,
    ) -> ShiftDraft:
        day = CLOCK_START.date() + timedelta(days=day_offset)
        start_dt = datetime.combine(day, start, tzinfo=timezone.utc)
        end_dt = datetime.combine(day, end, tzinfo=timezone.utc)
        if end_day_offset is not None:
            end_dt = datetime.combine(
                CLOCK_START.date() + timedelta(days=end_day_offset), end, tzinfo=timezone.utc
            )
        elif end_dt <= start_dt:
            end_dt += timedelta(days=1)
        return ShiftDraft(
            role=role,
            start=start_dt,
            end=end_dt,
            hourly_rate=hourly_rate,
            break_minutes=break_minutes,
            location=location,
        )

    return _make


@pytest.fixture
def posted_shift(coordinator, venue, make_draft):
    """A single posted shift: 09:00-17:00 tomorrow, 30 min break, 25/h."""
    return coordinator.post_shift(venue, make_draft()).shift


@pytest.fixture
def confirmed_shift(lifecycle, coordinator, posted_shift, venue, worker_a):
    """The posted shift after worker A applied, was offered and accepted."""
    lifecycle.apply(posted_shift.id, worker_a)
    coordinator.offer_single(posted_shift.id, venue, worker_a.id)
    return lifecycle.accept_offer(posted_shift.id, worker_a)
