"""
SQLite-based ledger store implementation.

Tables:
- expense_ledger: One double-entry row per processed staged file
  (UNIQUE drive_file_id = idempotency key)
- receipt_processing_errors: Append-only per-file failure log
- pipeline_runs: Summary of each completed run (migration 002)
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..schemas.ledger_entry import LedgerEntry


class InsertError(Exception):
    """Persisting a ledger row failed."""

    def __init__(self, message: str, drive_file_id: str | None = None):
        self.drive_file_id = drive_file_id
        super().__init__(message)


class DuplicateEntryError(InsertError):
    """A ledger row for this staged file already exists."""
    pass


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ProcessingErrorRecord:
    """Diagnostic record of a failed per-file step."""

    drive_file_id: str
    error_message: str
    drive_file_name: str | None = None
    stack_trace: str | None = None
    id: int | None = None
    created_at: str | None = None  # Assigned by the store

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProcessingErrorRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            drive_file_id=row["drive_file_id"],
            drive_file_name=row["drive_file_name"],
            error_message=row["error_message"],
            stack_trace=row["stack_trace"],
            created_at=row["created_at"],
        )


@dataclass
class LedgerRecord:
    """A persisted ledger row."""

    id: int
    entry: LedgerEntry
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LedgerRecord":
        """Create from database row."""
        raw_response = row["model_response"]
        entry = LedgerEntry(
            transaction_date=row["transaction_date"],
            debit_account=row["debit_account"],
            debit_vendor=row["debit_vendor"],
            debit_amount=row["debit_amount"],
            debit_tax=row["debit_tax"],
            debit_invoice_category=row["debit_invoice_category"],
            credit_account=row["credit_account"],
            credit_vendor=row["credit_vendor"],
            credit_amount=row["credit_amount"],
            credit_tax=row["credit_tax"],
            credit_invoice_category=row["credit_invoice_category"],
            description=row["description"],
            memo=row["memo"],
            drive_file_id=row["drive_file_id"],
            drive_file_name=row["drive_file_name"],
            drive_file_mime_type=row["drive_file_mime_type"],
            model_response=json.loads(raw_response) if raw_response else None,
        )
        return cls(id=row["id"], entry=entry, created_at=row["created_at"])


class LedgerStore:
    """
    SQLite-based ledger repository for the pipeline.

    Provides:
    - Idempotency gate (is_processed)
    - Transactional single-row ledger insert
    - Append-only processing error log
    - Run history and statistics for diagnostics

    Rows are never updated or deleted by the pipeline.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize ledger store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS expense_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    transaction_date TEXT NOT NULL,
                    debit_account TEXT NOT NULL,
                    debit_vendor TEXT NOT NULL DEFAULT '',
                    debit_amount INTEGER NOT NULL,
                    debit_tax INTEGER NOT NULL DEFAULT 0,
                    debit_invoice_category TEXT NOT NULL,
                    credit_account TEXT NOT NULL,
                    credit_vendor TEXT NOT NULL DEFAULT '',
                    credit_amount INTEGER NOT NULL,
                    credit_tax INTEGER NOT NULL DEFAULT 0,
                    credit_invoice_category TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    memo TEXT NOT NULL DEFAULT '',
                    drive_file_id TEXT NOT NULL UNIQUE,
                    drive_file_name TEXT NOT NULL,
                    drive_file_mime_type TEXT NOT NULL,
                    model_response TEXT,  -- JSON audit payload
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipt_processing_errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    drive_file_id TEXT NOT NULL,
                    drive_file_name TEXT,
                    error_message TEXT NOT NULL,
                    stack_trace TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_processing_errors_file "
                "ON receipt_processing_errors(drive_file_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # Ledger methods

    def is_processed(self, drive_file_id: str) -> bool:
        """Check whether a ledger row exists for this staged file."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM expense_ledger WHERE drive_file_id = ? LIMIT 1", (drive_file_id,)
            ).fetchone()
            return row is not None

    def insert_entry(self, entry: LedgerEntry) -> LedgerRecord:
        """
        Insert one ledger row in a single transaction.

        Raises:
            DuplicateEntryError: A row for entry.drive_file_id already exists
            InsertError: Any other persistence failure
        """
        model_json = (
            None
            if entry.model_response is None
            else json.dumps(entry.model_response, ensure_ascii=False)
        )

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO expense_ledger (
                        transaction_date,
                        debit_account, debit_vendor, debit_amount, debit_tax,
                        debit_invoice_category,
                        credit_account, credit_vendor, credit_amount, credit_tax,
                        credit_invoice_category,
                        description, memo,
                        drive_file_id, drive_file_name, drive_file_mime_type,
                        model_response, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        entry.transaction_date,
                        entry.debit_account,
                        entry.debit_vendor,
                        entry.debit_amount,
                        entry.debit_tax,
                        entry.debit_invoice_category,
                        entry.credit_account,
                        entry.credit_vendor,
                        entry.credit_amount,
                        entry.credit_tax,
                        entry.credit_invoice_category,
                        entry.description,
                        entry.memo,
                        entry.drive_file_id,
                        entry.drive_file_name,
                        entry.drive_file_mime_type,
                        model_json,
                        _utc_now(),
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM expense_ledger WHERE id = ?", (cursor.lastrowid,)
                ).fetchone()
        except sqlite3.IntegrityError as e:
            if "drive_file_id" in str(e):
                raise DuplicateEntryError(
                    f"Ledger entry already exists for {entry.drive_file_id}",
                    drive_file_id=entry.drive_file_id,
                ) from e
            raise InsertError(f"Ledger insert rejected: {e}", entry.drive_file_id) from e
        except sqlite3.Error as e:
            raise InsertError(f"Ledger insert failed: {e}", entry.drive_file_id) from e

        return LedgerRecord.from_row(row)

    def get_entry(self, drive_file_id: str) -> LedgerRecord | None:
        """Get the ledger row for a staged file."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM expense_ledger WHERE drive_file_id = ?", (drive_file_id,)
            ).fetchone()
            return LedgerRecord.from_row(row) if row else None

    def count_entries(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM expense_ledger").fetchone()[0]

    # Processing error methods

    def log_error(self, error: ProcessingErrorRecord) -> None:
        """Append a processing error. The timestamp is assigned here."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO receipt_processing_errors
                (drive_file_id, drive_file_name, error_message, stack_trace, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (
                    error.drive_file_id,
                    error.drive_file_name,
                    error.error_message,
                    error.stack_trace,
                    _utc_now(),
                ),
            )

    def list_errors(self, limit: int = 20, drive_file_id: str | None = None) -> list[ProcessingErrorRecord]:
        """Most recent processing errors first."""
        with self._transaction() as conn:
            if drive_file_id is None:
                rows = conn.execute(
                    "SELECT * FROM receipt_processing_errors ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM receipt_processing_errors
                    WHERE drive_file_id = ? ORDER BY id DESC LIMIT ?
                """,
                    (drive_file_id, limit),
                ).fetchall()
            return [ProcessingErrorRecord.from_row(row) for row in rows]

    # Run history

    def record_run(self, started_at: str, finished_at: str, summary: dict[str, int]) -> int:
        """Store the counters of a completed run. Returns the run ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pipeline_runs
                (started_at, finished_at, total, processed, moved_to_processed,
                 skipped_existing, skipped_unsupported, errors)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    started_at,
                    finished_at,
                    summary.get("total", 0),
                    summary.get("processed", 0),
                    summary.get("moved_to_processed", 0),
                    summary.get("skipped_existing", 0),
                    summary.get("skipped_unsupported", 0),
                    summary.get("errors", 0),
                ),
            )
            return cursor.lastrowid or 0

    def get_recent_runs(self, limit: int = 10) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM pipeline_runs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [dict(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get ledger statistics."""
        with self._transaction() as conn:
            entries = conn.execute(
                "SELECT COUNT(*) AS count, COALESCE(SUM(debit_amount), 0) AS amount "
                "FROM expense_ledger"
            ).fetchone()
            errors = conn.execute(
                "SELECT COUNT(*) AS count FROM receipt_processing_errors"
            ).fetchone()
            runs = conn.execute("SELECT COUNT(*) AS count FROM pipeline_runs").fetchone()
            by_account = conn.execute(
                """
                SELECT debit_account, COUNT(*) AS count, SUM(debit_amount) AS amount
                FROM expense_ledger
                GROUP BY debit_account
                ORDER BY amount DESC
            """
            ).fetchall()

            return {
                "ledger_entries": entries["count"],
                "ledger_amount_total": entries["amount"],
                "processing_errors": errors["count"],
                "runs_total": runs["count"],
                "by_debit_account": {
                    row["debit_account"]: {"count": row["count"], "amount": row["amount"]}
                    for row in by_account
                },
            }
