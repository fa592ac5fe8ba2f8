"""
Ledger Store (SQLite-based).

Lightweight persistent DB for:
- Expense ledger rows (one per staged file)
- Processing error log
- Run history

Enforces uniqueness on drive_file_id, and provides the advisory run lock that
serializes pipeline runs.
"""

from .locks import CRON_LOCK_KEY, LockContention, RunLock
from .sqlite_store import (
    DuplicateEntryError,
    InsertError,
    LedgerRecord,
    LedgerStore,
    ProcessingErrorRecord,
)

__all__ = [
    "CRON_LOCK_KEY",
    "DuplicateEntryError",
    "InsertError",
    "LedgerRecord",
    "LedgerStore",
    "LockContention",
    "ProcessingErrorRecord",
    "RunLock",
]
