"""
Receipt extraction schema and amount normalization.

This is the structured result the vision model must produce for one receipt.
Model output is validated into a ReceiptExtraction before anything else in the
pipeline reads it; nothing downstream touches the raw model JSON except for
audit storage.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any

from ..classification import AccountDecisionInput


class SchemaValidationError(ValueError):
    """Raised when model output does not match the extraction schema."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid extraction: " + "; ".join(problems))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass
class ReceiptExtraction:
    """Structured fields read from a receipt image or PDF."""

    transaction_date: str  # YYYY-MM-DD
    amount: float  # Total in the smallest currency unit (yen)
    vendor: str = ""
    items: list[str] = field(default_factory=list)
    items_summary: str = ""
    tax: float = 0
    suggested_debit_account: str = ""
    description: str = ""
    memo: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ReceiptExtraction":
        """
        Validate model output and build an extraction.

        Required: transaction_date (non-empty string), amount (number).
        Optional fields fall back to their defaults when absent or null.

        Raises:
            SchemaValidationError: Listing every field that failed validation
        """
        if not isinstance(data, dict):
            raise SchemaValidationError([f"expected a JSON object, got {type(data).__name__}"])

        problems: list[str] = []

        transaction_date = data.get("transaction_date")
        if not isinstance(transaction_date, str) or not transaction_date.strip():
            problems.append("transaction_date must be a non-empty string")

        amount = data.get("amount")
        if not _is_number(amount):
            problems.append("amount must be a number")

        tax = data.get("tax")
        if tax is None:
            tax = 0
        elif not _is_number(tax):
            problems.append("tax must be a number")

        items = data.get("items")
        if items is None:
            items = []
        elif not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            problems.append("items must be a list of strings")

        text_fields = {}
        for name in ("vendor", "items_summary", "suggested_debit_account", "description", "memo"):
            value = data.get(name)
            if value is None:
                value = ""
            elif not isinstance(value, str):
                problems.append(f"{name} must be a string")
            text_fields[name] = value

        if problems:
            raise SchemaValidationError(problems)

        return cls(
            transaction_date=transaction_date.strip(),
            amount=amount,
            tax=tax,
            items=list(items),
            **text_fields,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    def to_decision_input(self) -> AccountDecisionInput:
        """Text fields used by the classification engine."""
        return AccountDecisionInput(
            vendor=self.vendor,
            description=self.description,
            memo=self.memo,
            items_summary=self.items_summary,
            items=list(self.items),
            suggested_debit_account=self.suggested_debit_account,
        )


def normalize_amount(value: float | int | None) -> int:
    """Round a money value to an integer, halves rounding up."""
    if value is None:
        return 0
    return int(math.floor(float(value) + 0.5))


def compute_final_tax(amount: int, tax: float | int | None, fallback_rate: float | None) -> int:
    """
    Resolve the tax amount to post.

    The reported tax is rounded; if it is exactly zero and a fallback rate is
    configured, tax is recomputed as round(amount * fallback_rate).

    >>> compute_final_tax(1000, 0, 0.1)
    100
    >>> compute_final_tax(1000, 80, 0.1)
    80
    """
    normalized_tax = normalize_amount(tax)
    if normalized_tax == 0 and fallback_rate is not None:
        return normalize_amount(amount * fallback_rate)
    return normalized_tax
