"""
Django settings for the receipt ledger HTTP endpoints.

The endpoints are stateless JSON APIs: no admin, no sessions, no ORM models.
Pipeline configuration comes from config.yaml / environment (see config.py).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-secret-key-change-in-production")
DEBUG = os.environ.get("DJANGO_DEBUG", "False").lower() == "true"
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,*").split(",")

# TLS usually terminates at a proxy or the scheduler's platform
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

INSTALLED_APPS: list[str] = []

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "receipt_ledger.web.urls"

# No ORM usage; the ledger is managed by ledger_store
DATABASES = {}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Uploads above this are spooled to disk; the byte ceiling is enforced in the view
FILE_UPLOAD_MAX_MEMORY_SIZE = 5 * 1024 * 1024

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "pipeline": {
            "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "pipeline",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
        "receipt_ledger": {
            "handlers": ["console"],
            "level": "INFO",
        },
    },
}

# Path to config.yaml (optional; environment variables alone are enough)
RECEIPT_LEDGER_CONFIG = os.environ.get("RECEIPT_LEDGER_CONFIG", "")
