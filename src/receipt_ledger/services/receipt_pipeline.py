"""
Receipt Pipeline Run Coordinator.

One run = one pass over the pending staging zone, strictly sequential:

    IDLE -> LOCK_ACQUIRE -> LOCKED (per-file loop) -> LOCK_RELEASE -> IDLE

Per file:
1. Unsupported type          -> skipped_unsupported
2. Declared size over limit  -> processing error, file stays pending
3. Already in the ledger     -> move to processed, skipped_existing
4. Otherwise                 -> fetch, analyze, classify, insert, move, then pause

A failure in one file is recorded and counted; it never aborts the batch and
never touches rows already committed. The lock is released whatever happens.
"""

import logging
import time
import traceback
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from ..config import Config
from ..ledger_store import (
    DuplicateEntryError,
    LedgerStore,
    ProcessingErrorRecord,
    RunLock,
)
from ..schemas.ledger_entry import build_ledger_entry
from ..staging import FileTooLargeError, StagedFile, StagingStore

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    """Anything that turns receipt bytes into an AnalysisResult."""

    def analyze(self, file_bytes: bytes, mime_type: str, file_name: Optional[str] = None) -> Any:
        ...

    def close(self) -> None:
        ...


class RunStatus(str, Enum):
    """Outcome of a coordinator run."""

    COMPLETED = "COMPLETED"
    LOCKED = "LOCKED"  # Another run held the lock; nothing was done


class ItemOutcome(str, Enum):
    """What happened to one staged file."""

    PROCESSED = "PROCESSED"
    SKIPPED_EXISTING = "SKIPPED_EXISTING"
    SKIPPED_UNSUPPORTED = "SKIPPED_UNSUPPORTED"
    ERROR = "ERROR"


@dataclass
class RunSummary:
    """Aggregate counters of one run. Never carries per-file detail."""

    total: int = 0
    processed: int = 0
    moved_to_processed: int = 0
    skipped_existing: int = 0
    skipped_unsupported: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        """Public (camelCase) representation used by the trigger endpoint."""
        return {
            "total": self.total,
            "processed": self.processed,
            "movedToProcessed": self.moved_to_processed,
            "skippedExisting": self.skipped_existing,
            "skippedUnsupported": self.skipped_unsupported,
            "errors": self.errors,
        }


@dataclass
class RunOutcome:
    """Status plus summary (summary is empty when LOCKED)."""

    status: RunStatus
    summary: RunSummary = field(default_factory=RunSummary)

    @property
    def locked(self) -> bool:
        return self.status == RunStatus.LOCKED


@dataclass
class PipelineSettings:
    """Run coordinator knobs (see config.PipelineConfig)."""

    max_files_per_run: int = 50
    max_file_bytes: int = 10_485_760
    default_credit_account: str = "普通預金"
    tax_fallback_rate: Optional[float] = None
    inter_item_delay_seconds: float = 2.0

    @classmethod
    def from_config(cls, config: Config) -> "PipelineSettings":
        p = config.pipeline
        return cls(
            max_files_per_run=p.max_files_per_run,
            max_file_bytes=p.max_file_bytes,
            default_credit_account=p.default_credit_account,
            tax_fallback_rate=p.tax_fallback_rate,
            inter_item_delay_seconds=p.inter_item_delay_seconds,
        )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class RunCoordinator:
    """
    Orchestrates one scheduled pipeline run.

    All collaborators are injected: staging store, analyzer, ledger store and
    run lock. Tests substitute fakes for any of them.
    """

    def __init__(
        self,
        staging: StagingStore,
        analyzer: Analyzer,
        ledger: LedgerStore,
        lock: RunLock,
        settings: PipelineSettings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            staging: Staging store (pending/processed zones)
            analyzer: Vision model extraction client
            ledger: Ledger repository
            lock: Advisory run lock
            settings: Limits, credit account, tax fallback, pacing
            sleep: Sleep function used for the inter-item delay
        """
        self.staging = staging
        self.analyzer = analyzer
        self.ledger = ledger
        self.lock = lock
        self.settings = settings
        self._sleep = sleep

    def close(self) -> None:
        """Release the analyzer's and the staging store's HTTP clients."""
        try:
            self.analyzer.close()
        finally:
            self.staging.close()

    def __enter__(self) -> "RunCoordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def run(self) -> RunOutcome:
        """
        Execute one run.

        Returns:
            RunOutcome(LOCKED) without side effects if another run is active,
            else RunOutcome(COMPLETED) with the aggregate summary.

        Raises:
            StagingError: If the pending list itself cannot be read (the lock
                is still released)
        """
        if not self.lock.try_acquire():
            logger.info("Another run is active, exiting without work")
            return RunOutcome(status=RunStatus.LOCKED)

        started_at = _utc_now()
        summary = RunSummary()
        try:
            files = self.staging.list_pending(self.settings.max_files_per_run)
            logger.info("Run started: %d pending file(s) in %s", len(files), self.staging.name)

            for staged in files:
                summary.total += 1
                outcome = self._process_item(staged, summary)
                logger.debug("%s (%s): %s", staged.name, staged.id, outcome.value)

            self._record_run(started_at, summary)
            logger.info(
                "Run finished: total=%d processed=%d moved=%d skipped_existing=%d "
                "skipped_unsupported=%d errors=%d",
                summary.total,
                summary.processed,
                summary.moved_to_processed,
                summary.skipped_existing,
                summary.skipped_unsupported,
                summary.errors,
            )
            return RunOutcome(status=RunStatus.COMPLETED, summary=summary)
        finally:
            self.lock.release()

    def _process_item(self, staged: StagedFile, summary: RunSummary) -> ItemOutcome:
        """Run the per-file pipeline, isolating any failure to this file."""
        try:
            if not self.staging.is_supported(staged):
                summary.skipped_unsupported += 1
                return ItemOutcome.SKIPPED_UNSUPPORTED

            if staged.size and staged.size > self.settings.max_file_bytes:
                raise FileTooLargeError(
                    f"File size {staged.size} bytes exceeds the limit of "
                    f"{self.settings.max_file_bytes} bytes",
                    status=413,
                    code="file_too_large",
                )

            if self.ledger.is_processed(staged.id):
                self._converge_existing(staged, summary)
                return ItemOutcome.SKIPPED_EXISTING

            data = self.staging.fetch(staged.id)
            analysis = self.analyzer.analyze(data, staged.mime_type, staged.name)

            entry = build_ledger_entry(
                extraction=analysis.parsed,
                raw=analysis.raw,
                file_id=staged.id,
                file_name=staged.name,
                mime_type=staged.mime_type,
                credit_account=self.settings.default_credit_account,
                tax_fallback_rate=self.settings.tax_fallback_rate,
            )

            try:
                self.ledger.insert_entry(entry)
            except DuplicateEntryError:
                # A concurrent run posted this file between our check and insert
                logger.info("Ledger entry for %s was posted concurrently, skipping", staged.id)
                self._converge_existing(staged, summary)
                return ItemOutcome.SKIPPED_EXISTING

            logger.info(
                "Posted %s: %s %d (tax %d) -> %s",
                staged.name,
                entry.debit_vendor or "-",
                entry.debit_amount,
                entry.debit_tax,
                entry.debit_account,
            )

            self.staging.move_to_processed(staged.id, staged.parents)
            summary.processed += 1
            summary.moved_to_processed += 1

            if self.settings.inter_item_delay_seconds > 0:
                self._sleep(self.settings.inter_item_delay_seconds)
            return ItemOutcome.PROCESSED

        except Exception as e:
            summary.errors += 1
            logger.error("Processing failed for %s (%s): %s", staged.name, staged.id, e)
            self._record_error(staged, e)
            return ItemOutcome.ERROR

    def _converge_existing(self, staged: StagedFile, summary: RunSummary) -> None:
        """Move an already-posted file so the staging zones match the ledger."""
        self.staging.move_to_processed(staged.id, staged.parents)
        summary.skipped_existing += 1
        summary.moved_to_processed += 1

    def _record_error(self, staged: StagedFile, error: Exception) -> None:
        record = ProcessingErrorRecord(
            drive_file_id=staged.id,
            drive_file_name=staged.name,
            error_message=str(error) or type(error).__name__,
            stack_trace="".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
        )
        try:
            self.ledger.log_error(record)
        except Exception:
            # The batch must go on even if the error log is unavailable
            logger.exception("Could not record processing error for %s", staged.id)

    def _record_run(self, started_at: str, summary: RunSummary) -> None:
        try:
            self.ledger.record_run(started_at, _utc_now(), asdict(summary))
        except Exception:
            logger.exception("Could not record run history")


def build_staging_store(config: Config) -> StagingStore:
    """Construct the configured staging backend."""
    from ..staging import GoogleDriveStagingStore, LocalFolderStagingStore

    staging = config.staging
    if staging.backend == "local":
        return LocalFolderStagingStore(staging.local_root)
    return GoogleDriveStagingStore.from_service_account(
        email=staging.service_account_email,
        private_key=staging.service_account_private_key,
        unprocessed_folder_id=staging.unprocessed_folder_id,
        processed_folder_id=staging.processed_folder_id,
    )


def build_coordinator(config: Config) -> RunCoordinator:
    """
    Construct a coordinator and all of its collaborators from configuration.

    The caller owns the result and must close() it to release HTTP clients.

    Raises:
        ConfigurationError: Before anything is constructed or locked
    """
    from ..receipt_ai import ReceiptAnalyzer

    config.ensure_valid()

    ledger = LedgerStore(config.database.path)
    lock = RunLock(config.database.path)
    staging = build_staging_store(config)
    return RunCoordinator(
        staging=staging,
        analyzer=ReceiptAnalyzer(config.model),
        ledger=ledger,
        lock=lock,
        settings=PipelineSettings.from_config(config),
    )
