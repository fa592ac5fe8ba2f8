"""
Migration 002: Add pipeline_runs table.

One row per completed coordinator run with its summary counters. Runs that
found the lock held are not recorded.
"""

import sqlite3

VERSION = 2
NAME = "pipeline_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create pipeline_runs table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS pipeline_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            total INTEGER NOT NULL DEFAULT 0,
            processed INTEGER NOT NULL DEFAULT 0,
            moved_to_processed INTEGER NOT NULL DEFAULT 0,
            skipped_existing INTEGER NOT NULL DEFAULT 0,
            skipped_unsupported INTEGER NOT NULL DEFAULT 0,
            errors INTEGER NOT NULL DEFAULT 0
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_pipeline_runs_started ON pipeline_runs(started_at)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove pipeline_runs table."""
    conn.execute("DROP TABLE IF EXISTS pipeline_runs")
