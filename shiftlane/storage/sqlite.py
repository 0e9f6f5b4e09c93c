"""SQLite storage for shifts, applications, promo codes and invoices.

Records are stored as JSON documents alongside the columns needed to
filter and order them. Shift writes use optimistic concurrency on the
``version`` column; multi-shift writes run in a single transaction.
"""

import contextlib
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from shiftlane.errors import VersionConflictError
from shiftlane.payroll.invoice import Invoice
from shiftlane.payroll.promo import PromoCode, normalize_code
from shiftlane.shifts.models import (
    ApplicationStatus,
    Shift,
    ShiftApplication,
    ShiftStateTransition,
    ShiftStatus,
    normalize_status,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS shifts (
    id TEXT PRIMARY KEY,
    venue_id TEXT NOT NULL,
    worker_id TEXT,
    block_id TEXT,
    status TEXT NOT NULL,
    start_utc TEXT NOT NULL,
    data TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_shifts_status ON shifts(status);
CREATE INDEX IF NOT EXISTS idx_shifts_venue ON shifts(venue_id);
CREATE INDEX IF NOT EXISTS idx_shifts_worker ON shifts(worker_id);
CREATE INDEX IF NOT EXISTS idx_shifts_block ON shifts(block_id);

CREATE TABLE IF NOT EXISTS shift_applications (
    id TEXT PRIMARY KEY,
    shift_id TEXT NOT NULL,
    worker_id TEXT NOT NULL,
    status TEXT NOT NULL,
    seq INTEGER NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_applications_shift ON shift_applications(shift_id);
CREATE INDEX IF NOT EXISTS idx_applications_worker ON shift_applications(worker_id);

CREATE TABLE IF NOT EXISTS shift_transitions (
    id TEXT PRIMARY KEY,
    shift_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transitions_shift ON shift_transitions(shift_id);

CREATE TABLE IF NOT EXISTS promo_codes (
    code TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    venue_id TEXT NOT NULL,
    worker_id TEXT,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_invoices_venue ON invoices(venue_id);
"""


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class SQLiteStore:
    """Durable store implementing ShiftStorage, PromoCodeStorage and InvoiceLedger.

    A connection is opened per operation. ``":memory:"`` is supported by
    holding one shared connection for the life of the store.
    """

    def __init__(self, db_path: Union[str, Path] = "shiftlane.db"):
        self.db_path = str(db_path)
        self._shared: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._shared = self._open()
        else:
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Yield a connection; commit on success, roll back on error."""
        conn = self._shared or self._open()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug("Transaction failed, rolling back: %s", e)
            conn.rollback()
            raise
        finally:
            if conn is not self._shared:
                conn.close()

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            row = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
            if row["v"] is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.debug("Initialized shift store at %s", self.db_path)

    @staticmethod
    def _to_json(data: Any) -> str:
        return json.dumps(data, sort_keys=True)

    @staticmethod
    def _from_json(text: Optional[str]) -> Any:
        return json.loads(text) if text else None

    def _next_seq(self, conn: sqlite3.Connection, table: str) -> int:
        row = conn.execute(f"SELECT COALESCE(MAX(seq), 0) + 1 AS n FROM {table}").fetchone()
        return row["n"]

    # =========================================================================
    # Shifts
    # =========================================================================

    def _shift_row(self, shift: Shift) -> tuple:
        return (
            shift.venue_id,
            shift.worker_id,
            shift.block_id,
            shift.status,
            _utc_iso(shift.start),
            self._to_json(shift.to_dict()),
        )

    def save_shift(self, shift: Shift) -> str:
        with self._connect() as conn:
            try:
                conn.execute(
                    """INSERT INTO shifts
                       (venue_id, worker_id, block_id, status, start_utc, data, id, version)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    self._shift_row(shift) + (shift.id, shift.version),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Shift {shift.id} already exists") from e
        return shift.id

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM shifts WHERE id = ?", (shift_id,)
            ).fetchone()
        return self._row_to_shift(row) if row else None

    def _row_to_shift(self, row: sqlite3.Row) -> Shift:
        data = self._from_json(row["data"])
        data["version"] = row["version"]
        return Shift.from_dict(data)

    def _write_shift(self, conn: sqlite3.Connection, shift: Shift, expected_version: int) -> bool:
        current = conn.execute("SELECT version FROM shifts WHERE id = ?", (shift.id,)).fetchone()
        if current is None:
            return False
        if current["version"] != expected_version:
            raise VersionConflictError("shifts", shift.id, expected_version, current["version"])

        new_version = expected_version + 1
        data = shift.to_dict()
        data["version"] = new_version
        cursor = conn.execute(
            """UPDATE shifts SET
                   venue_id = ?, worker_id = ?, block_id = ?, status = ?,
                   start_utc = ?, data = ?, version = version + 1
               WHERE id = ? AND version = ?""",
            (
                shift.venue_id,
                shift.worker_id,
                shift.block_id,
                shift.status,
                _utc_iso(shift.start),
                self._to_json(data),
                shift.id,
                expected_version,
            ),
        )
        if cursor.rowcount == 0:
            # Version changed between check and update
            row = conn.execute("SELECT version FROM shifts WHERE id = ?", (shift.id,)).fetchone()
            actual = row["version"] if row else -1
            raise VersionConflictError("shifts", shift.id, expected_version, actual)
        return True

    def update_shift(self, shift: Shift, expected_version: Optional[int] = None) -> bool:
        if expected_version is None:
            expected_version = shift.version
        with self._connect() as conn:
            if not self._write_shift(conn, shift, expected_version):
                return False
        shift.version = expected_version + 1
        return True

    def update_shifts(self, shifts: Sequence[Shift]) -> None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            for shift in shifts:
                if not self._write_shift(conn, shift, shift.version):
                    raise VersionConflictError("shifts", shift.id, shift.version, -1)
        for shift in shifts:
            shift.version += 1

    def list_shifts(
        self,
        status: Optional[ShiftStatus] = None,
        venue_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        block_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Shift]:
        clauses = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(normalize_status(status))
        if venue_id is not None:
            clauses.append("venue_id = ?")
            params.append(venue_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)
        if block_id is not None:
            clauses.append("block_id = ?")
            params.append(block_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data, version FROM shifts {where} "
                "ORDER BY start_utc, id LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        return [self._row_to_shift(r) for r in rows]

    def list_block(self, block_id: str) -> List[Shift]:
        return self.list_shifts(block_id=block_id, limit=10_000)

    # =========================================================================
    # Applications
    # =========================================================================

    def save_application(self, application: ShiftApplication) -> str:
        with self._connect() as conn:
            existing = conn.execute(
                "SELECT seq FROM shift_applications WHERE id = ?", (application.id,)
            ).fetchone()
            seq = existing["seq"] if existing else self._next_seq(conn, "shift_applications")
            conn.execute(
                """INSERT OR REPLACE INTO shift_applications
                   (id, shift_id, worker_id, status, seq, data) VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    application.id,
                    application.shift_id,
                    application.worker_id,
                    application.status,
                    seq,
                    self._to_json(application.to_dict()),
                ),
            )
        return application.id

    def get_application(self, application_id: str) -> Optional[ShiftApplication]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM shift_applications WHERE id = ?", (application_id,)
            ).fetchone()
        return ShiftApplication.from_dict(self._from_json(row["data"])) if row else None

    def list_applications(
        self,
        shift_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> List[ShiftApplication]:
        clauses = []
        params: List[Any] = []
        if shift_id is not None:
            clauses.append("shift_id = ?")
            params.append(shift_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value if isinstance(status, ApplicationStatus) else status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data FROM shift_applications {where} ORDER BY seq", params
            ).fetchall()
        return [ShiftApplication.from_dict(self._from_json(r["data"])) for r in rows]

    def update_application_status(
        self, application_id: str, status: ApplicationStatus
    ) -> bool:
        status_val = status.value if isinstance(status, ApplicationStatus) else status
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM shift_applications WHERE id = ?", (application_id,)
            ).fetchone()
            if not row:
                return False
            data = self._from_json(row["data"])
            data["status"] = status_val
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            conn.execute(
                "UPDATE shift_applications SET status = ?, data = ? WHERE id = ?",
                (status_val, self._to_json(data), application_id),
            )
        return True

    # =========================================================================
    # Transitions
    # =========================================================================

    def save_transition(self, transition: ShiftStateTransition) -> str:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO shift_transitions (id, shift_id, seq, data) VALUES (?, ?, ?, ?)",
                (
                    transition.id,
                    transition.shift_id,
                    self._next_seq(conn, "shift_transitions"),
                    self._to_json(transition.to_dict()),
                ),
            )
        return transition.id

    def get_transitions(self, shift_id: str) -> List[ShiftStateTransition]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM shift_transitions WHERE shift_id = ? ORDER BY seq",
                (shift_id,),
            ).fetchall()
        return [ShiftStateTransition.from_dict(self._from_json(r["data"])) for r in rows]

    # =========================================================================
    # Promo codes
    # =========================================================================

    def get_code(self, code: str) -> Optional[PromoCode]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM promo_codes WHERE code = ?", (normalize_code(code),)
            ).fetchone()
        return PromoCode.from_dict(self._from_json(row["data"])) if row else None

    def save_code(self, promo: PromoCode) -> str:
        if promo.created_at is None:
            promo.created_at = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO promo_codes (code, type, used, data) VALUES (?, ?, ?, ?)",
                (promo.code, promo.type, 1 if promo.used else 0, self._to_json(promo.to_dict())),
            )
        return promo.code

    def mark_used(self, code: str, used_by: Optional[str] = None) -> bool:
        code = normalize_code(code)
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM promo_codes WHERE code = ?", (code,)).fetchone()
            if row is None:
                return False
            data = self._from_json(row["data"])
            data.update(
                used=True,
                used_at=datetime.now(timezone.utc).isoformat(),
                used_by=used_by,
            )
            # The used = 0 guard makes concurrent consumers race on one row
            cursor = conn.execute(
                "UPDATE promo_codes SET used = 1, data = ? WHERE code = ? AND used = 0",
                (self._to_json(data), code),
            )
            return cursor.rowcount == 1

    def release(self, code: str) -> bool:
        code = normalize_code(code)
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM promo_codes WHERE code = ?", (code,)).fetchone()
            if row is None:
                return False
            data = self._from_json(row["data"])
            data.update(used=False, used_at=None, used_by=None)
            cursor = conn.execute(
                "UPDATE promo_codes SET used = 0, data = ? WHERE code = ? AND used = 1",
                (self._to_json(data), code),
            )
            return cursor.rowcount == 1

    def list_codes(self, unused_only: bool = False) -> List[PromoCode]:
        query = "SELECT data FROM promo_codes"
        if unused_only:
            query += " WHERE used = 0"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY code").fetchall()
        return [PromoCode.from_dict(self._from_json(r["data"])) for r in rows]

    # =========================================================================
    # Invoices
    # =========================================================================

    def save_invoice(self, invoice: Invoice) -> str:
        with self._connect() as conn:
            try:
                conn.execute(
                    """INSERT INTO invoices (id, venue_id, worker_id, created_at, data)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        invoice.id,
                        invoice.venue_id,
                        invoice.worker_id,
                        _utc_iso(invoice.created_at),
                        self._to_json(invoice.to_dict()),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Invoice {invoice.id} already exists") from e
        return invoice.id

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        return Invoice.from_dict(self._from_json(row["data"])) if row else None

    def list_invoices(
        self, venue_id: Optional[str] = None, worker_id: Optional[str] = None
    ) -> List[Invoice]:
        clauses = []
        params: List[Any] = []
        if venue_id is not None:
            clauses.append("venue_id = ?")
            params.append(venue_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data FROM invoices {where} ORDER BY created_at", params
            ).fetchall()
        return [Invoice.from_dict(self._from_json(r["data"])) for r in rows]

    def stats(self) -> Dict[str, int]:
        """Row counts per table, for the CLI status output."""
        counts = {}
        with self._connect() as conn:
            for table in ("shifts", "shift_applications", "shift_transitions", "promo_codes", "invoices"):
                counts[table] = conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"]
        return counts
