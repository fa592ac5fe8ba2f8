"""Debit account classification.

Decides the expense account for a parsed receipt. The decision order is:

1. Highest-priority rule in ACCOUNT_RULES with any pattern found in the receipt text
2. The account suggested by the model (trimmed, if non-empty)
3. DEFAULT_DEBIT_ACCOUNT

Everything here is pure: no I/O, no clock, no randomness. The same input always
yields the same account.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, field

from .rules import ACCOUNT_RULES, DEFAULT_DEBIT_ACCOUNT, AccountRule


@dataclass
class AccountDecisionInput:
    """Text fields of a receipt that take part in classification."""

    vendor: str | None = None
    description: str | None = None
    memo: str | None = None
    items_summary: str | None = None
    items: list[str] = field(default_factory=list)
    suggested_debit_account: str | None = None


@dataclass(frozen=True)
class RuleMatch:
    """The winning rule and the pattern that matched."""

    account: str
    pattern: str
    priority: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "account": self.account,
            "pattern": self.pattern,
            "priority": self.priority,
        }


def build_haystack(candidate: AccountDecisionInput) -> str:
    """Join all non-empty text fields into one normalized, lowercased string."""
    parts = [
        candidate.vendor or "",
        candidate.description or "",
        candidate.memo or "",
        candidate.items_summary or "",
        *(candidate.items or []),
    ]
    joined = " ".join(part for part in parts if part)
    return unicodedata.normalize("NFKC", joined).lower()


def _by_priority(rules: Sequence[AccountRule]) -> list[AccountRule]:
    # sorted() is stable: equal priorities keep declaration order
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


_ORDERED_RULES = _by_priority(ACCOUNT_RULES)


def find_account_rule_match(
    candidate: AccountDecisionInput,
    rules: Sequence[AccountRule] | None = None,
) -> RuleMatch | None:
    """Find the highest-priority rule matching the receipt text.

    Args:
        candidate: Receipt text fields.
        rules: Rule table to use (defaults to ACCOUNT_RULES).

    Returns:
        RuleMatch for the winning rule, or None if nothing matched.
    """
    haystack = build_haystack(candidate)
    if not haystack:
        return None

    ordered = _ORDERED_RULES if rules is None else _by_priority(rules)
    for rule in ordered:
        for pattern in rule.patterns:
            if pattern.search(haystack):
                return RuleMatch(
                    account=rule.account,
                    pattern=pattern.pattern,
                    priority=rule.priority,
                )
    return None


def decide_debit_account(
    candidate: AccountDecisionInput,
    rules: Sequence[AccountRule] | None = None,
) -> str:
    """Decide the debit account: rule match, then model suggestion, then default."""
    matched = find_account_rule_match(candidate, rules)
    if matched:
        return matched.account

    suggested = (candidate.suggested_debit_account or "").strip()
    if suggested:
        return suggested

    return DEFAULT_DEBIT_ACCOUNT
