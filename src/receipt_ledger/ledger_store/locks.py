"""
Advisory run lock scoped to the ledger database.

A pipeline run holds an exclusive SQLite transaction on a sidecar lock database
(``<ledger>.db.lock-<key>``) for its whole duration. A second run trying the
same key gets SQLITE_BUSY immediately and backs off; there is no waiting and
no queuing.

The lock lives only as long as the holding connection. If the process dies
mid-run, the OS drops the file lock with it, so a crashed run cannot block
later runs.
"""

import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# Fixed key for the scheduled receipt run
CRON_LOCK_KEY = 9_991_337


class LockContention(Exception):
    """Another run currently holds the lock."""

    def __init__(self, key: int):
        self.key = key
        super().__init__(f"Run lock {key} is held by another run")


def lock_path_for(db_path: Path | str, key: int) -> Path:
    db_path = Path(db_path)
    return db_path.with_name(f"{db_path.name}.lock-{key}")


class RunLock:
    """
    Non-blocking mutual exclusion between pipeline runs.

    Usage:
        lock = RunLock(db_path)
        if not lock.try_acquire():
            return  # another run is active
        try:
            ...
        finally:
            lock.release()

    or, raising LockContention when busy:
        with RunLock(db_path):
            ...
    """

    def __init__(self, db_path: Path | str, key: int = CRON_LOCK_KEY):
        self.key = key
        self.path = lock_path_for(db_path, key)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._guard = threading.Lock()

    @property
    def held(self) -> bool:
        """True while this instance holds the lock."""
        return self._conn is not None

    def try_acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns:
            True if acquired, False if another holder has it
        """
        with self._guard:
            if self._conn is not None:
                return True

            conn = sqlite3.connect(
                str(self.path), timeout=0, isolation_level=None, check_same_thread=False
            )
            try:
                conn.execute("BEGIN EXCLUSIVE")
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS run_lock "
                    "(key INTEGER PRIMARY KEY, pid INTEGER, acquired_at TEXT)"
                )
                conn.execute(
                    "INSERT OR REPLACE INTO run_lock (key, pid, acquired_at) VALUES (?, ?, ?)",
                    (self.key, os.getpid(), datetime.now(timezone.utc).isoformat()),
                )
            except sqlite3.OperationalError as e:
                conn.close()
                message = str(e).lower()
                if "locked" in message or "busy" in message:
                    logger.info("Run lock %d is held by another run", self.key)
                    return False
                raise

            self._conn = conn
            logger.debug("Acquired run lock %d", self.key)
            return True

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        with self._guard:
            conn, self._conn = self._conn, None
            if conn is None:
                return
            try:
                # Nothing is ever committed: the row only marks the open transaction
                conn.execute("ROLLBACK")
            finally:
                conn.close()
            logger.debug("Released run lock %d", self.key)

    def __enter__(self) -> "RunLock":
        if not self.try_acquire():
            raise LockContention(self.key)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
