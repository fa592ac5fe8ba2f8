"""
Django application initialization.
"""

import os
from typing import Optional


def _configure_environment(config_path: Optional[str]) -> None:
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "receipt_ledger.web.settings")
    # Note: os.environ requires strings, so convert Path objects
    if config_path:
        os.environ["RECEIPT_LEDGER_CONFIG"] = str(config_path)


def get_wsgi_application(config_path: Optional[str] = None):
    """
    Get the Django WSGI application configured with our settings.

    Args:
        config_path: Path to config.yaml (optional)
    """
    _configure_environment(config_path)

    from django.core.wsgi import get_wsgi_application as django_wsgi

    return django_wsgi()


def run_server(host: str = "127.0.0.1", port: int = 8080, config_path: Optional[str] = None):
    """
    Run the Django development server.

    Args:
        host: Host to bind to
        port: Port to listen on
        config_path: Path to config.yaml
    """
    _configure_environment(config_path)

    import django

    django.setup()

    from django.core.management import execute_from_command_line

    print(f"\nStarting receipt ledger endpoints at http://{host}:{port}/")
    print(f"  Trigger: GET  http://{host}:{port}/api/cron/process-receipts")
    print(f"  Upload:  POST http://{host}:{port}/api/upload")
    print("\nPress Ctrl+C to stop.\n")

    execute_from_command_line(
        [
            "manage.py",
            "runserver",
            f"{host}:{port}",
            "--noreload",
        ]
    )
