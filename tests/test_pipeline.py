"""Tests for the run coordinator.

The staging store, analyzer and lock are in-memory fakes; the ledger is a real
SQLite LedgerStore so idempotency is enforced by the database.
"""

import sqlite3

import pytest
from fixtures import FakeAnalyzer, FakeLock, FakeStagingStore

from receipt_ledger.config import ConfigurationError
from receipt_ledger.ledger_store import LedgerStore, RunLock
from receipt_ledger.receipt_ai import ExtractionError
from receipt_ledger.schemas import ReceiptExtraction, build_ledger_entry
from receipt_ledger.services import (
    PipelineSettings,
    RunCoordinator,
    RunStatus,
    RunSummary,
    build_coordinator,
)
from receipt_ledger.staging import LocalFolderStagingStore, StagingError


@pytest.fixture
def staging() -> FakeStagingStore:
    return FakeStagingStore()


@pytest.fixture
def ledger(temp_db) -> LedgerStore:
    return LedgerStore(temp_db)


@pytest.fixture
def sleeps() -> list:
    return []


def _coordinator(staging, analyzer, ledger, lock=None, sleeps=None, **settings) -> RunCoordinator:
    return RunCoordinator(
        staging=staging,
        analyzer=analyzer,
        ledger=ledger,
        lock=lock or FakeLock(),
        settings=PipelineSettings(**settings),
        sleep=(sleeps.append if sleeps is not None else lambda seconds: None),
    )


def _preinsert(ledger: LedgerStore, sample: dict, file_id: str) -> None:
    ledger.insert_entry(
        build_ledger_entry(
            ReceiptExtraction.from_dict(sample),
            raw=sample,
            file_id=file_id,
            file_name=f"{file_id}.jpg",
            mime_type="image/jpeg",
            credit_account="普通預金",
        )
    )


class TestRunSummary:
    """Tests for summary serialization."""

    def test_public_keys(self) -> None:
        summary = RunSummary(total=3, processed=1, moved_to_processed=2, skipped_existing=1)
        assert summary.to_dict() == {
            "total": 3,
            "processed": 1,
            "movedToProcessed": 2,
            "skippedExisting": 1,
            "skippedUnsupported": 0,
            "errors": 0,
        }


class TestHappyPath:
    """Tests for fully processed receipts."""

    def test_eneos_end_to_end(self, staging, ledger, sleeps) -> None:
        """A fuel receipt without reported tax is classified, posted with fallback tax, and moved."""
        staging.add("f1", "receipt1.pdf", mime_type="application/pdf", data=b"%PDF-1.4 receipt")
        payload = {"transaction_date": "2024-05-01", "vendor": "ENEOS", "amount": 5000, "tax": 0}
        analyzer = FakeAnalyzer({"receipt1.pdf": payload})
        lock = FakeLock()

        outcome = _coordinator(
            staging, analyzer, ledger, lock, sleeps, tax_fallback_rate=0.1
        ).run()

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.summary.to_dict() == {
            "total": 1,
            "processed": 1,
            "movedToProcessed": 1,
            "skippedExisting": 0,
            "skippedUnsupported": 0,
            "errors": 0,
        }
        assert ledger.count_entries() == 1
        record = ledger.get_entry("f1")
        assert record.entry.debit_account == "車両費"
        assert record.entry.debit_amount == 5000
        assert record.entry.debit_tax == 500
        assert record.entry.transaction_date == "2024-05-01"
        assert record.entry.credit_account == "普通預金"
        assert "f1" in staging.processed
        assert "f1" not in staging.pending
        assert sleeps == [2.0]
        assert lock.released == 1

    def test_custom_credit_account(self, staging, ledger, sample_model_json) -> None:
        staging.add("f1", "eneos.jpg")
        analyzer = FakeAnalyzer({"eneos.jpg": sample_model_json})

        _coordinator(staging, analyzer, ledger, default_credit_account="現金").run()

        assert ledger.get_entry("f1").entry.credit_account == "現金"

    def test_tax_fallback(self, staging, ledger) -> None:
        staging.add("f1", "r.pdf", mime_type="application/pdf")
        payload = {"transaction_date": "2024-05-02", "amount": 1000, "tax": 0}
        analyzer = FakeAnalyzer({"r.pdf": payload})

        _coordinator(staging, analyzer, ledger, tax_fallback_rate=0.1).run()

        assert ledger.get_entry("f1").entry.debit_tax == 100

    def test_max_files_per_run(self, staging, ledger, sample_model_json) -> None:
        for i in range(3):
            staging.add(f"f{i}", f"r{i}.jpg")
        analyzer = FakeAnalyzer({f"r{i}.jpg": sample_model_json for i in range(3)})

        outcome = _coordinator(staging, analyzer, ledger, max_files_per_run=2).run()

        assert outcome.summary.total == 2
        assert list(staging.pending) == ["f2"]

    def test_run_recorded(self, staging, ledger, sample_model_json) -> None:
        staging.add("f1", "eneos.jpg")
        analyzer = FakeAnalyzer({"eneos.jpg": sample_model_json})

        _coordinator(staging, analyzer, ledger).run()

        runs = ledger.get_recent_runs()
        assert len(runs) == 1
        assert runs[0]["processed"] == 1
        assert runs[0]["moved_to_processed"] == 1


class TestSkips:
    """Tests for files that are not sent to the model."""

    def test_unsupported_type(self, staging, ledger) -> None:
        staging.add("f1", "scan.png", mime_type="image/png")
        analyzer = FakeAnalyzer()

        outcome = _coordinator(staging, analyzer, ledger).run()

        assert outcome.summary.skipped_unsupported == 1
        assert outcome.summary.errors == 0
        assert staging.fetched == []
        assert staging.moves == []
        assert "f1" in staging.pending
        assert ledger.list_errors() == []

    def test_oversize_file(self, staging, ledger, sleeps) -> None:
        """Oversize files are recorded as errors, never fetched, and stay pending."""
        staging.add("f1", "huge.pdf", mime_type="application/pdf", size=20_000_000)
        analyzer = FakeAnalyzer()

        outcome = _coordinator(staging, analyzer, ledger, sleeps=sleeps).run()

        assert outcome.summary.errors == 1
        assert outcome.summary.processed == 0
        assert staging.fetched == []
        assert analyzer.calls == []
        assert "f1" in staging.pending
        errors = ledger.list_errors()
        assert len(errors) == 1
        assert errors[0].drive_file_id == "f1"
        assert errors[0].drive_file_name == "huge.pdf"
        assert "20000000" in errors[0].error_message
        assert sleeps == []

    def test_already_in_ledger(self, staging, ledger, sample_model_json) -> None:
        """A file already posted is moved without calling the model."""
        _preinsert(ledger, sample_model_json, "f1")
        staging.add("f1", "eneos.jpg")
        analyzer = FakeAnalyzer()

        outcome = _coordinator(staging, analyzer, ledger).run()

        assert outcome.summary.skipped_existing == 1
        assert outcome.summary.moved_to_processed == 1
        assert outcome.summary.processed == 0
        assert analyzer.calls == []
        assert staging.fetched == []
        assert "f1" in staging.processed
        assert ledger.count_entries() == 1


class TestFailureIsolation:
    """Tests for per-file error handling."""

    def test_extraction_failure_does_not_abort(self, staging, ledger, sample_model_json) -> None:
        staging.add("f1", "bad.jpg")
        staging.add("f2", "good.jpg")
        analyzer = FakeAnalyzer(
            {
                "bad.jpg": ExtractionError("Receipt extraction failed after 2 attempts"),
                "good.jpg": sample_model_json,
            }
        )

        outcome = _coordinator(staging, analyzer, ledger).run()

        assert outcome.summary.total == 2
        assert outcome.summary.errors == 1
        assert outcome.summary.processed == 1
        assert "f1" in staging.pending
        assert "f2" in staging.processed
        assert not ledger.is_processed("f1")

        errors = ledger.list_errors()
        assert len(errors) == 1
        assert errors[0].drive_file_id == "f1"
        assert "ExtractionError" in errors[0].stack_trace

    def test_error_log_failure_does_not_abort(self, staging, temp_db, sample_model_json) -> None:
        class BrokenErrorLog(LedgerStore):
            def log_error(self, error):
                raise sqlite3.OperationalError("disk I/O error")

        ledger = BrokenErrorLog(temp_db)
        staging.add("f1", "bad.jpg")
        staging.add("f2", "good.jpg")
        analyzer = FakeAnalyzer({"bad.jpg": ValueError("boom"), "good.jpg": sample_model_json})

        outcome = _coordinator(staging, analyzer, ledger).run()

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.summary.errors == 1
        assert outcome.summary.processed == 1

    def test_list_failure_releases_lock(self, staging, ledger) -> None:
        staging.list_error = StagingError("Folder not found", status=404)
        lock = FakeLock()

        with pytest.raises(StagingError):
            _coordinator(staging, FakeAnalyzer(), ledger, lock).run()

        assert lock.released == 1
        assert ledger.get_recent_runs() == []


class TestLocking:
    """Tests for mutual exclusion between runs."""

    def test_locked_run_does_nothing(self, staging, ledger) -> None:
        staging.add("f1", "eneos.jpg")
        lock = FakeLock(available=False)

        outcome = _coordinator(staging, FakeAnalyzer(), ledger, lock).run()

        assert outcome.status == RunStatus.LOCKED
        assert outcome.locked
        assert outcome.summary.total == 0
        assert staging.list_calls == 0
        assert lock.released == 0

    def test_concurrent_run_performs_no_writes(
        self, staging, ledger, temp_db, sample_model_json
    ) -> None:
        """A second run while the lock is held writes nothing."""
        staging.add("f1", "eneos.jpg")
        analyzer = FakeAnalyzer({"eneos.jpg": sample_model_json})

        holder = RunLock(temp_db)
        assert holder.try_acquire()
        try:
            outcome = _coordinator(staging, analyzer, ledger, RunLock(temp_db)).run()
        finally:
            holder.release()

        assert outcome.status == RunStatus.LOCKED
        assert ledger.count_entries() == 0
        assert ledger.list_errors() == []
        assert ledger.get_recent_runs() == []
        assert staging.moves == []
        assert analyzer.calls == []

        # Once released, the next run proceeds
        outcome = _coordinator(staging, analyzer, ledger, RunLock(temp_db)).run()
        assert outcome.status == RunStatus.COMPLETED
        assert outcome.summary.processed == 1


class TestConvergence:
    """Tests for repeated runs reaching a fixed point."""

    def test_move_failure_then_converges(self, staging, ledger, sample_model_json) -> None:
        """Ledger written but move failed: the next run moves it, the third sees nothing."""
        staging.add("f1", "eneos.jpg")
        staging.move_failures["f1"] = 1
        analyzer = FakeAnalyzer({"eneos.jpg": sample_model_json})

        first = _coordinator(staging, analyzer, ledger).run().summary
        assert first.errors == 1
        assert first.processed == 0
        assert ledger.is_processed("f1")
        assert "f1" in staging.pending

        second = _coordinator(staging, analyzer, ledger).run().summary
        assert second.skipped_existing == 1
        assert second.moved_to_processed == 1
        assert second.errors == 0
        assert "f1" in staging.processed

        third = _coordinator(staging, analyzer, ledger).run().summary
        assert third.total == 0

        assert analyzer.calls == ["eneos.jpg"]
        assert ledger.count_entries() == 1

    def test_duplicate_insert_is_benign(self, staging, temp_db, sample_model_json) -> None:
        """A row posted between the check and the insert counts as already processed."""

        class RacingLedger(LedgerStore):
            def is_processed(self, drive_file_id):
                return False

        ledger = RacingLedger(temp_db)
        _preinsert(ledger, sample_model_json, "f1")
        staging.add("f1", "eneos.jpg")
        analyzer = FakeAnalyzer({"eneos.jpg": sample_model_json})

        outcome = _coordinator(staging, analyzer, ledger).run()

        assert outcome.summary.errors == 0
        assert outcome.summary.skipped_existing == 1
        assert outcome.summary.moved_to_processed == 1
        assert "f1" in staging.processed
        assert ledger.list_errors() == []
        assert ledger.count_entries() == 1


class TestBuildCoordinator:
    """Tests for wiring from configuration."""

    def test_invalid_config_raises_before_lock(self, local_config) -> None:
        local_config.model.api_key = ""

        with pytest.raises(ConfigurationError) as exc_info:
            build_coordinator(local_config)

        assert "GEMINI_API_KEY is required" in exc_info.value.errors
        assert not list(local_config.database.path.parent.glob("*.lock-*"))

    def test_local_backend(self, local_config) -> None:
        with build_coordinator(local_config) as coordinator:
            assert isinstance(coordinator.staging, LocalFolderStagingStore)
            assert coordinator.settings.max_file_bytes == 1024
            assert coordinator.settings.inter_item_delay_seconds == 0

    def test_empty_run(self, local_config) -> None:
        with build_coordinator(local_config) as coordinator:
            outcome = coordinator.run()

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.summary.total == 0

    def test_close_releases_model_client(self, local_config) -> None:
        coordinator = build_coordinator(local_config)
        coordinator.run()
        coordinator.close()

        assert coordinator.analyzer._client.is_closed


class TestClose:
    """Tests for releasing collaborator resources."""

    def test_close_closes_analyzer_and_staging(self, staging, ledger) -> None:
        analyzer = FakeAnalyzer()

        with _coordinator(staging, analyzer, ledger) as coordinator:
            coordinator.run()
            assert not analyzer.closed

        assert analyzer.closed
        assert staging.closed

    def test_staging_closed_when_analyzer_close_fails(self, staging, ledger) -> None:
        class BrokenAnalyzer(FakeAnalyzer):
            def close(self):
                raise RuntimeError("close failed")

        analyzer = BrokenAnalyzer()

        with pytest.raises(RuntimeError):
            _coordinator(staging, analyzer, ledger).close()

        assert staging.closed


class TestReusedLocalName:
    """A new receipt dropped under an already posted name is never silently filed."""

    def test_reused_name_is_reported_and_stays_pending(
        self, tmp_path, ledger, sample_model_json
    ) -> None:
        staging = LocalFolderStagingStore(tmp_path / "staging")
        (staging.unprocessed_dir / "receipt.jpg").write_bytes(b"\xff\xd8first")
        analyzer = FakeAnalyzer({"receipt.jpg": sample_model_json})

        first = _coordinator(staging, analyzer, ledger).run().summary
        assert first.processed == 1

        (staging.unprocessed_dir / "receipt.jpg").write_bytes(b"\xff\xd8second")
        second = _coordinator(staging, analyzer, ledger).run().summary

        assert second.errors == 1
        assert second.skipped_existing == 0
        assert second.moved_to_processed == 0
        assert ledger.count_entries() == 1
        assert (staging.unprocessed_dir / "receipt.jpg").read_bytes() == b"\xff\xd8second"
        assert (staging.processed_dir / "receipt.jpg").read_bytes() == b"\xff\xd8first"
        errors = ledger.list_errors()
        assert len(errors) == 1
        assert errors[0].drive_file_name == "receipt.jpg"
        assert "already processed" in errors[0].error_message

    def test_identical_copy_converges(self, tmp_path, ledger, sample_model_json) -> None:
        staging = LocalFolderStagingStore(tmp_path / "staging")
        (staging.unprocessed_dir / "receipt.jpg").write_bytes(b"\xff\xd8same")
        analyzer = FakeAnalyzer({"receipt.jpg": sample_model_json})
        _coordinator(staging, analyzer, ledger).run()

        (staging.unprocessed_dir / "receipt.jpg").write_bytes(b"\xff\xd8same")
        second = _coordinator(staging, analyzer, ledger).run().summary

        assert second.skipped_existing == 1
        assert second.errors == 0
        assert staging.list_pending(10) == []
        assert analyzer.calls == ["receipt.jpg"]
