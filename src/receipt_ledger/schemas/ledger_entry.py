"""
Double-entry ledger row built from one receipt.

One LedgerEntry is posted per staged file. The staged file's identifier
(drive_file_id) is the idempotency key: the ledger store enforces it as unique.
"""

from dataclasses import asdict, dataclass
from typing import Any

from ..classification import decide_debit_account, find_account_rule_match
from .receipt_extraction import ReceiptExtraction, compute_final_tax, normalize_amount

# Invoice category for both legs (課税仕入 = taxable purchase)
DEFAULT_INVOICE_CATEGORY = "課税仕入"


@dataclass
class LedgerEntry:
    """A debit leg and a credit leg sharing one description and audit payload."""

    transaction_date: str

    # Debit leg (expense)
    debit_account: str
    debit_vendor: str
    debit_amount: int
    debit_tax: int
    debit_invoice_category: str

    # Credit leg (payment source)
    credit_account: str
    credit_vendor: str
    credit_amount: int
    credit_tax: int
    credit_invoice_category: str

    description: str
    memo: str

    # Originating staged file
    drive_file_id: str
    drive_file_name: str
    drive_file_mime_type: str

    # Raw model output plus the classification decision, for audit
    model_response: Any = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def build_ledger_entry(
    extraction: ReceiptExtraction,
    raw: Any,
    file_id: str,
    file_name: str,
    mime_type: str,
    credit_account: str,
    tax_fallback_rate: float | None = None,
) -> LedgerEntry:
    """
    Classify a receipt and build its ledger row.

    Args:
        extraction: Validated model output
        raw: Raw model JSON (stored for audit)
        file_id: Staged file identifier (idempotency key)
        file_name: Staged file display name
        mime_type: Staged file MIME type
        credit_account: Account credited for the payment
        tax_fallback_rate: Rate applied when the model reports zero tax

    Returns:
        LedgerEntry ready for insertion
    """
    amount = normalize_amount(extraction.amount)
    final_tax = compute_final_tax(amount, extraction.tax, tax_fallback_rate)

    decision_input = extraction.to_decision_input()
    rule_match = find_account_rule_match(decision_input)
    debit_account = decide_debit_account(decision_input)

    return LedgerEntry(
        transaction_date=extraction.transaction_date,
        debit_account=debit_account,
        debit_vendor=extraction.vendor,
        debit_amount=amount,
        debit_tax=final_tax,
        debit_invoice_category=DEFAULT_INVOICE_CATEGORY,
        credit_account=credit_account,
        credit_vendor="",
        credit_amount=amount,
        credit_tax=0,
        credit_invoice_category=DEFAULT_INVOICE_CATEGORY,
        description=extraction.description,
        memo=extraction.memo,
        drive_file_id=file_id,
        drive_file_name=file_name,
        drive_file_mime_type=mime_type,
        model_response={
            "model": raw,
            "rule_match": rule_match.to_dict() if rule_match else None,
            "decided_debit_account": debit_account,
        },
    )
