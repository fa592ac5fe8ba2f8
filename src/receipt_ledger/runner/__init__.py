"""
CLI runner module.

Provides commands:
- run: Process pending receipts once
- serve: HTTP trigger and upload endpoints
- status: Ledger statistics and recent errors
- upload: Stage local receipt files
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
