"""
Migration runner for versioned ledger schema changes.

Migration files are named {version}_{name}.py (001_ledger_indexes.py, ...)
and define:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  (optional)
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "receipt_ledger.ledger_store.migrations"


@dataclass
class Migration:
    """A single schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, sorted by version."""
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )

    versions = [m.version for m in migrations]
    if len(versions) != len(set(versions)):
        raise RuntimeError(f"Duplicate migration versions: {versions}")
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies pending migrations in version order.

    Applied versions are tracked in the `migrations` table. Each migration runs
    in its own transaction together with its bookkeeping row.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def current_version(self) -> int:
        """Highest applied version (0 when nothing has run)."""
        return max(self.applied_versions(), default=0)

    def pending(self) -> list[Migration]:
        applied = self.applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply(self, migration: Migration) -> None:
        """Apply one migration and record it."""
        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d failed", migration.version)
            raise

    def run_pending(self) -> list[int]:
        """Apply all pending migrations. Returns the applied versions."""
        applied = []
        for migration in self.pending():
            self.apply(migration)
            applied.append(migration.version)

        if applied:
            logger.info("Applied %d migrations: %s", len(applied), applied)
        else:
            logger.debug("No pending migrations")
        return applied
