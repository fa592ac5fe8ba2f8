"""
Receipt data models: validated model output and the ledger row built from it.
"""

from .ledger_entry import (
    DEFAULT_INVOICE_CATEGORY,
    LedgerEntry,
    build_ledger_entry,
)
from .receipt_extraction import (
    ReceiptExtraction,
    SchemaValidationError,
    compute_final_tax,
    normalize_amount,
)

__all__ = [
    # Receipt Extraction (canonical model output schema)
    "ReceiptExtraction",
    "SchemaValidationError",
    # Amount normalization
    "normalize_amount",
    "compute_final_tax",
    # Ledger Entry (canonical persisted schema)
    "LedgerEntry",
    "DEFAULT_INVOICE_CATEGORY",
    "build_ledger_entry",
]
