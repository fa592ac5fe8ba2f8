"""
Classification Engine.

Deterministic rule matcher that maps receipt text to a debit account, with
fallback to the model's suggestion and finally to a fixed default category.
"""

from .engine import (
    AccountDecisionInput,
    RuleMatch,
    build_haystack,
    decide_debit_account,
    find_account_rule_match,
)
from .rules import ACCOUNT_RULES, DEFAULT_DEBIT_ACCOUNT, AccountRule, make_pattern

__all__ = [
    "ACCOUNT_RULES",
    "DEFAULT_DEBIT_ACCOUNT",
    "AccountDecisionInput",
    "AccountRule",
    "RuleMatch",
    "build_haystack",
    "decide_debit_account",
    "find_account_rule_match",
    "make_pattern",
]
