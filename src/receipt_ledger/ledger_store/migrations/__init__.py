"""
Versioned schema migrations for the ledger database.

LedgerStore applies pending migrations on open; applied versions are recorded
in the migrations table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
