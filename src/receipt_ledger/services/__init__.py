"""
Service layer for the receipt ledger pipeline.
"""

from .receipt_pipeline import (
    ItemOutcome,
    PipelineSettings,
    RunCoordinator,
    RunOutcome,
    RunStatus,
    RunSummary,
    build_coordinator,
    build_staging_store,
)

__all__ = [
    "ItemOutcome",
    "PipelineSettings",
    "RunCoordinator",
    "RunOutcome",
    "RunStatus",
    "RunSummary",
    "build_coordinator",
    "build_staging_store",
]
