"""
Migration 001: Add reporting indexes on expense_ledger.

Month-end exports filter by transaction date and group by debit account.
"""

import sqlite3

VERSION = 1
NAME = "ledger_indexes"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create transaction_date and debit_account indexes."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_expense_ledger_transaction_date "
        "ON expense_ledger(transaction_date)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_expense_ledger_debit_account "
        "ON expense_ledger(debit_account)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the reporting indexes."""
    conn.execute("DROP INDEX IF EXISTS idx_expense_ledger_transaction_date")
    conn.execute("DROP INDEX IF EXISTS idx_expense_ledger_debit_account")
