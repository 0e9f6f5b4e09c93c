"""Tests for the SQLite store."""

from datetime import datetime, timedelta, timezone

import pytest

from shiftlane.errors import VersionConflictError
from shiftlane.payroll.costs import CostEngine
from shiftlane.payroll.invoice import build_shift_invoice
from shiftlane.payroll.promo import PromoCode, PromoType
from shiftlane.shifts.lifecycle import ShiftLifecycle
from shiftlane.shifts.models import (
    Actor,
    ApplicationStatus,
    Shift,
    ShiftApplication,
    ShiftStatus,
)
from shiftlane.storage import SQLiteStore

START = datetime(2025, 3, 2, 9, 0, tzinfo=timezone.utc)


def _shift(shift_id: str, day: int = 0, **overrides) -> Shift:
    start = START + timedelta(days=day)
    fields = dict(
        id=shift_id,
        venue_id="venue-1",
        role="barista",
        start=start,
        end=start + timedelta(hours=6),
        hourly_rate=24.0,
        break_minutes=15,
    )
    fields.update(overrides)
    return Shift(**fields)


@pytest.fixture
def store(tmp_path):
    store = SQLiteStore(tmp_path / "data" / "shiftlane.db")
    yield store
    store.close()


class TestShifts:
    """Tests for shift persistence."""

    def test_round_trip(self, store):
        shift = _shift("s1", applicant_ids=["w1"], requirements=["RSA"], block_id="b1")
        store.save_shift(shift)
        loaded = store.get_shift("s1")
        assert loaded.to_dict() == shift.to_dict()

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "persist.db"
        SQLiteStore(path).save_shift(_shift("s1"))
        assert SQLiteStore(path).get_shift("s1").role == "barista"

    def test_duplicate_id(self, store):
        store.save_shift(_shift("s1"))
        with pytest.raises(ValueError, match="already exists"):
            store.save_shift(_shift("s1"))

    def test_version_conflict(self, store):
        store.save_shift(_shift("s1"))
        first = store.get_shift("s1")
        second = store.get_shift("s1")

        assert store.update_shift(first) is True
        assert first.version == 2
        with pytest.raises(VersionConflictError):
            store.update_shift(second)

    def test_update_missing(self, store):
        assert store.update_shift(_shift("ghost")) is False

    def test_update_shifts_rolls_back(self, store):
        store.save_shift(_shift("s1"))
        store.save_shift(_shift("s2", day=1))
        a = store.get_shift("s1")
        b = store.get_shift("s2")
        store.update_shift(store.get_shift("s2"))

        a.status = ShiftStatus.CANCELLED.value
        b.status = ShiftStatus.CANCELLED.value
        with pytest.raises(VersionConflictError):
            store.update_shifts([a, b])

        assert store.get_shift("s1").status == ShiftStatus.POSTED.value
        assert store.get_shift("s1").version == 1
        assert a.version == 1

    def test_list_filters(self, store):
        store.save_shift(_shift("later", day=3, block_id="b1"))
        store.save_shift(_shift("sooner", day=1, block_id="b1"))
        store.save_shift(_shift("elsewhere", day=2, venue_id="venue-2"))

        assert [s.id for s in store.list_block("b1")] == ["sooner", "later"]
        assert [s.id for s in store.list_shifts(venue_id="venue-2")] == ["elsewhere"]
        assert [s.id for s in store.list_shifts(status="posted", limit=1, offset=1)] == ["elsewhere"]

    def test_stats(self, store):
        store.save_shift(_shift("s1"))
        assert store.stats()["shifts"] == 1
        assert store.stats()["invoices"] == 0


class TestApplicationsAndTransitions:
    """Tests for applications and the audit log."""

    def test_application_order_and_status(self, store):
        for i, worker in enumerate(["w2", "w1"]):
            store.save_application(ShiftApplication(id=f"a{i}", shift_id="s1", worker_id=worker))

        assert [a.worker_id for a in store.list_applications(shift_id="s1")] == ["w2", "w1"]
        assert store.update_application_status("a1", ApplicationStatus.ACCEPTED)
        assert store.get_application("a1").status == "accepted"
        assert [a.id for a in store.list_applications(status=ApplicationStatus.PENDING)] == ["a0"]

    def test_lifecycle_on_sqlite(self, store):
        lifecycle = ShiftLifecycle(store, now_fn=lambda: START - timedelta(days=1))
        venue = Actor.venue("venue-1")
        worker = Actor.worker("w1")
        shift = lifecycle.create(_shift("s1"), venue)

        lifecycle.apply(shift.id, worker)
        lifecycle.offer(shift.id, venue, worker.id)
        confirmed = lifecycle.accept_offer(shift.id, worker)

        assert store.get_shift("s1").status == ShiftStatus.CONFIRMED.value
        assert store.get_shift("s1").version == confirmed.version
        assert [t.edge for t in store.get_transitions("s1")] == [
            "create",
            "apply",
            "offer",
            "accept_offer",
        ]
        assert store.list_applications(shift_id="s1")[0].status == "accepted"


class TestPromoCodes:
    """Tests for the promo-code registry."""

    def test_single_use(self, store):
        store.save_code(PromoCode(code="launch", type=PromoType.FREE_SHIFT_POSTING))

        assert store.mark_used("LAUNCH", used_by="venue-1") is True
        assert store.mark_used("launch", used_by="venue-2") is False
        promo = store.get_code("Launch")
        assert promo.used is True
        assert promo.used_by == "venue-1"

    def test_release(self, store):
        store.save_code(PromoCode(code="LAUNCH", type=PromoType.FEE_DISCOUNT_10))
        assert store.release("LAUNCH") is False

        store.mark_used("LAUNCH", used_by="venue-1")
        assert store.release("launch") is True
        promo = store.get_code("LAUNCH")
        assert promo.used is False
        assert promo.used_by is None
        assert store.mark_used("LAUNCH", used_by="venue-2") is True

    def test_list_unused(self, store):
        store.save_code(PromoCode(code="A1", type=PromoType.FREE_JOB_POSTING))
        store.save_code(PromoCode(code="B2", type=PromoType.FEE_DISCOUNT_10))
        store.mark_used("A1")
        assert [p.code for p in store.list_codes(unused_only=True)] == ["B2"]
        assert len(store.list_codes()) == 2

    def test_cost_engine_consumes_through_store(self, store):
        store.save_code(PromoCode(code="FREEJOB", type=PromoType.FREE_JOB_POSTING))
        engine = CostEngine(promo_codes=store)
        assert engine.quote(8, 20.0, "FREEJOB").total_cost == 0.0
        assert store.get_code("FREEJOB").used is True


class TestInvoices:
    """Tests for the invoice ledger."""

    def test_save_and_read(self, store):
        invoice = build_shift_invoice(
            "venue-1", "w1", "s1", START, "barista", CostEngine().quote(5.75, 24.0)
        )
        store.save_invoice(invoice)

        loaded = store.get_invoice(invoice.id)
        assert loaded.total_amount == pytest.approx(154.56)
        assert loaded.line_items[0].hours == 5.75
        assert [i.id for i in store.list_invoices(venue_id="venue-1")] == [invoice.id]
        assert store.list_invoices(worker_id="w9") == []

        with pytest.raises(ValueError):
            store.save_invoice(invoice)


class TestInMemoryDatabase:
    """Tests for the shared in-memory connection."""

    def test_memory_store_keeps_data(self):
        store = SQLiteStore(":memory:")
        store.save_shift(_shift("s1"))
        assert store.get_shift("s1") is not None
        store.close()
