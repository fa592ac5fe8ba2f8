"""Tests for CLI commands.

These tests verify that all CLI commands are properly registered and route
to the pipeline with the right exit codes.
"""

from unittest.mock import MagicMock, patch

from receipt_ledger.config import ConfigurationError
from receipt_ledger.ledger_store import LedgerStore, ProcessingErrorRecord
from receipt_ledger.runner.main import (
    EXIT_FAILURE,
    EXIT_LOCKED,
    EXIT_OK,
    cmd_run,
    cmd_status,
    cmd_upload,
    create_cli,
    main,
)
from receipt_ledger.services import RunOutcome, RunStatus, RunSummary


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()
        for command in ["run", "serve", "status", "init-config"]:
            assert parser.parse_args([command]).command == command
        assert parser.parse_args(["upload", "a.jpg"]).command == "upload"

    def test_serve_defaults(self):
        args = create_cli().parse_args(["serve"])
        assert args.host == "127.0.0.1"
        assert args.port == 8080

    def test_global_options(self):
        args = create_cli().parse_args(["-c", "other.yaml", "-v", "run"])
        assert str(args.config) == "other.yaml"
        assert args.verbose is True

    def test_no_command_prints_help(self):
        assert main([]) == EXIT_FAILURE


class TestRunCommand:
    """Tests for the run command."""

    def test_completed(self, local_config, capsys):
        coordinator = MagicMock()
        coordinator.run.return_value = RunOutcome(RunStatus.COMPLETED, RunSummary(total=1))

        with patch("receipt_ledger.runner.main.build_coordinator", return_value=coordinator):
            assert cmd_run(local_config) == EXIT_OK

        assert '"total": 1' in capsys.readouterr().out
        coordinator.close.assert_called_once()

    def test_locked(self, local_config):
        coordinator = MagicMock()
        coordinator.run.return_value = RunOutcome(RunStatus.LOCKED)

        with patch("receipt_ledger.runner.main.build_coordinator", return_value=coordinator):
            assert cmd_run(local_config) == EXIT_LOCKED

    def test_configuration_error(self, local_config, capsys):
        with patch(
            "receipt_ledger.runner.main.build_coordinator",
            side_effect=ConfigurationError(["CRON_SECRET is required"]),
        ):
            assert cmd_run(local_config) == EXIT_FAILURE

        assert "CRON_SECRET is required" in capsys.readouterr().out

    def test_run_failure(self, local_config):
        coordinator = MagicMock()
        coordinator.run.side_effect = RuntimeError("list failed")

        with patch("receipt_ledger.runner.main.build_coordinator", return_value=coordinator):
            assert cmd_run(local_config) == EXIT_FAILURE

        coordinator.close.assert_called_once()

    def test_real_empty_run(self, local_config):
        assert cmd_run(local_config) == EXIT_OK


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_output(self, local_config, capsys):
        store = LedgerStore(local_config.database.path)
        store.log_error(
            ProcessingErrorRecord(
                drive_file_id="f1", drive_file_name="bad.jpg", error_message="model failed"
            )
        )

        assert cmd_status(local_config) == EXIT_OK

        out = capsys.readouterr().out
        assert "Ledger entries:      0" in out
        assert "bad.jpg" in out
        assert "model failed" in out


class TestUploadCommand:
    """Tests for the upload command."""

    def test_upload_local_files(self, local_config, tmp_path):
        receipt = tmp_path / "receipt.jpg"
        receipt.write_bytes(b"\xff\xd8data")

        assert cmd_upload(local_config, [receipt]) == EXIT_OK
        assert (local_config.staging.local_root / "unprocessed" / "receipt.jpg").exists()

    def test_rejects_unsupported_and_missing(self, local_config, tmp_path, capsys):
        note = tmp_path / "note.txt"
        note.write_text("hello")

        assert cmd_upload(local_config, [note, tmp_path / "missing.pdf"]) == EXIT_FAILURE

        out = capsys.readouterr().out
        assert "note.txt" in out
        assert "missing.pdf" in out

    def test_rejects_too_large(self, local_config, tmp_path):
        big = tmp_path / "big.pdf"
        big.write_bytes(b"x" * 4096)

        assert cmd_upload(local_config, [big]) == EXIT_FAILURE
        assert not (local_config.staging.local_root / "unprocessed" / "big.pdf").exists()


class TestInitConfig:
    """Tests for the init-config command."""

    def test_writes_and_refuses_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == EXIT_OK
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == EXIT_FAILURE
        assert main(["-c", str(path), "init-config", "--force"]) == EXIT_OK
