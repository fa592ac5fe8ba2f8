"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

from ..config import Config, ConfigurationError, create_default_config, load_config
from ..ledger_store import LedgerStore
from ..services import build_coordinator, build_staging_store
from ..staging import StagingError, check_upload

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOCKED = 3


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-ledger",
        description="Extract receipts with a vision model and post them to the expense ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("run", help="Process pending receipts once")

    serve_parser = subparsers.add_parser("serve", help="Serve the trigger and upload endpoints")
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the web server (default: 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the web server (default: 8080)",
    )

    status_parser = subparsers.add_parser("status", help="Show ledger statistics and recent errors")
    status_parser.add_argument(
        "--errors",
        type=int,
        default=10,
        help="Number of recent processing errors to show (default: 10)",
    )

    upload_parser = subparsers.add_parser("upload", help="Stage local receipt files")
    upload_parser.add_argument("paths", nargs="+", type=Path, help="Files to upload")

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    return parser


def cmd_run(config: Config) -> int:
    """Run the pipeline once."""
    try:
        coordinator = build_coordinator(config)
    except ConfigurationError as e:
        for error in e.errors:
            print(f"❌ {error}")
        return EXIT_FAILURE

    try:
        outcome = coordinator.run()
    except Exception as e:
        logger.exception("Pipeline run failed")
        print(f"❌ Run failed: {e}")
        return EXIT_FAILURE
    finally:
        coordinator.close()

    if outcome.locked:
        print("🔒 Another run is active; nothing was done.")
        return EXIT_LOCKED

    print(json.dumps(outcome.summary.to_dict(), indent=2))
    return EXIT_OK


def cmd_serve(config_path: Path, host: str, port: int) -> int:
    """Serve the HTTP endpoints."""
    from ..web.app import run_server

    run_server(
        host=host,
        port=port,
        config_path=str(config_path) if config_path.exists() else None,
    )
    return EXIT_OK


def cmd_status(config: Config, error_limit: int = 10) -> int:
    """Show ledger statistics, recent runs and recent errors."""
    store = LedgerStore(config.database.path)
    stats = store.get_stats()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Ledger entries:      {stats['ledger_entries']}")
    print(f"  Total debit amount:  {stats['ledger_amount_total']}")
    print(f"  Processing errors:   {stats['processing_errors']}")
    print(f"  Runs recorded:       {stats['runs_total']}")

    if stats["by_debit_account"]:
        print("\n  By debit account:")
        for account, values in stats["by_debit_account"].items():
            print(f"    {account:<12} {values['count']:>5} {values['amount']:>12}")

    runs = store.get_recent_runs(limit=5)
    if runs:
        print("\n  Recent runs:")
        for run in runs:
            print(
                f"    {run['finished_at']}  total={run['total']} processed={run['processed']} "
                f"skipped={run['skipped_existing']} errors={run['errors']}"
            )

    errors = store.list_errors(limit=error_limit)
    if errors:
        print("\n  Recent errors:")
        for error in errors:
            print(f"    {error.created_at}  {error.drive_file_name or error.drive_file_id}")
            print(f"      {error.error_message}")
    print()

    return EXIT_OK


def cmd_upload(config: Config, paths: list[Path]) -> int:
    """Stage local files with the same checks as the upload endpoint."""
    try:
        config.ensure_valid()
    except ConfigurationError as e:
        for error in e.errors:
            print(f"❌ {error}")
        return EXIT_FAILURE

    store = build_staging_store(config)
    failed = 0
    try:
        for path in paths:
            if not path.is_file():
                print(f"❌ {path}: not a file")
                failed += 1
                continue

            mime_type = mimetypes.guess_type(path.name)[0] or ""
            try:
                check_upload(
                    path.name, mime_type, path.stat().st_size, config.pipeline.max_file_bytes
                )
                staged = store.upload(path.name, mime_type, path.read_bytes())
            except StagingError as e:
                print(f"❌ {path}: {e.message}")
                if e.hint:
                    print(f"   hint: {e.hint}")
                failed += 1
                continue

            print(f"✅ {path} -> {staged.id}")
    finally:
        store.close()

    return EXIT_FAILURE if failed else EXIT_OK


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write a default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return EXIT_FAILURE

    create_default_config(config_path)
    print(f"✅ Wrote {config_path}")
    return EXIT_OK


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return EXIT_FAILURE

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return EXIT_FAILURE

    # Route to command
    if parsed.command == "run":
        return cmd_run(config)
    elif parsed.command == "serve":
        return cmd_serve(parsed.config, parsed.host, parsed.port)
    elif parsed.command == "status":
        return cmd_status(config, parsed.errors)
    elif parsed.command == "upload":
        return cmd_upload(config, parsed.paths)
    else:
        parser.print_help()
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
