"""
Staged receipt → Vision model extraction → Rule classification → Ledger posting

An unattended batch pipeline that picks up uploaded receipts from a staging area,
parses them with a vision/LLM model, assigns a debit account with a deterministic
rule table, posts exactly one double-entry ledger row per file and moves the file
to the processed area.
"""

__version__ = "0.1.0"
