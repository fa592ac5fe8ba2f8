"""
Views for the receipt ledger HTTP endpoints.

- GET  /api/cron/process-receipts: run the pipeline once (scheduler trigger)
- POST /api/upload: stage receipt files into the unprocessed zone
"""

import hmac
import logging
from typing import Optional

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ..config import Config, ConfigurationError, load_config
from ..services import RunCoordinator, build_coordinator, build_staging_store
from ..staging import StagingError, StagingStore, check_upload

logger = logging.getLogger(__name__)


class AuthorizationError(Exception):
    """Request did not carry the expected bearer token."""
    pass


def _get_config() -> Config:
    """Load the pipeline configuration."""
    return load_config(settings.RECEIPT_LEDGER_CONFIG or None)


def _get_coordinator(config: Config) -> RunCoordinator:
    """Build a coordinator for one triggered run."""
    return build_coordinator(config)


def _get_staging_store(config: Config) -> StagingStore:
    """Build the staging store used for uploads."""
    return build_staging_store(config)


def _check_bearer(request: HttpRequest, expected: str) -> None:
    """Raise AuthorizationError unless the Authorization header matches."""
    header = request.headers.get("Authorization", "")
    if not hmac.compare_digest(header.encode(), f"Bearer {expected}".encode()):
        raise AuthorizationError()


def _error(code: str, message: str, status: int, hint: Optional[str] = None) -> JsonResponse:
    error = {"code": code, "message": message}
    if hint:
        error["hint"] = hint
    return JsonResponse({"ok": False, "error": error}, status=status)


@require_http_methods(["GET"])
def process_receipts(request: HttpRequest) -> JsonResponse:
    """
    Scheduled trigger: process pending receipts once.

    Responses:
        200 {"ok": true, "summary": {...}}
        401 Unauthorized (bad or missing bearer)
        423 Locked (another run is active)
        500 Missing configuration / Internal error
    """
    try:
        config = _get_config()
        config.ensure_valid()
        _check_bearer(request, config.pipeline.cron_secret)

        coordinator = _get_coordinator(config)
        try:
            outcome = coordinator.run()
        finally:
            coordinator.close()
        if outcome.locked:
            return JsonResponse({"ok": False, "error": "Locked"}, status=423)
        return JsonResponse({"ok": True, "summary": outcome.summary.to_dict()})

    except AuthorizationError:
        logger.warning("Rejected pipeline trigger: bad or missing bearer token")
        return JsonResponse({"ok": False, "error": "Unauthorized"}, status=401)
    except ConfigurationError as e:
        logger.error("Pipeline trigger failed: %s", e)
        return JsonResponse(
            {"ok": False, "error": f"Missing configuration: {'; '.join(e.errors)}"},
            status=500,
        )
    except Exception:
        logger.exception("Pipeline run failed")
        return JsonResponse({"ok": False, "error": "Internal error"}, status=500)


@csrf_exempt
@require_http_methods(["POST"])
def upload_receipts(request: HttpRequest) -> JsonResponse:
    """
    Stage uploaded receipts (multipart "files" and/or "file").

    Files are validated and uploaded one by one; the first failure ends the
    request and earlier files stay staged.
    """
    try:
        config = _get_config()
        config.ensure_valid()
        if config.pipeline.upload_token:
            _check_bearer(request, config.pipeline.upload_token)

        uploaded_files = request.FILES.getlist("files") + request.FILES.getlist("file")
        if not uploaded_files:
            return JsonResponse(
                {"ok": False, "error": "ファイルが指定されていません。"}, status=400
            )

        store = _get_staging_store(config)
        saved = []
        try:
            for uploaded in uploaded_files:
                mime_type = (uploaded.content_type or "").lower()
                check_upload(
                    uploaded.name, mime_type, uploaded.size, config.pipeline.max_file_bytes
                )
                staged = store.upload(uploaded.name, mime_type, uploaded.read())
                logger.info("Staged upload %s as %s", uploaded.name, staged.id)
                saved.append(staged.to_dict())
        finally:
            store.close()

        return JsonResponse({"ok": True, "files": saved})

    except AuthorizationError:
        return JsonResponse({"ok": False, "error": "Unauthorized"}, status=401)
    except StagingError as e:
        status = e.status if isinstance(e.status, int) else 502
        logger.warning("Upload rejected (%d): %s", status, e.message)
        return _error(e.code or "staging_error", e.message, status, e.hint)
    except ConfigurationError as e:
        logger.error("Upload failed: %s", e)
        return _error("configuration_error", f"Missing configuration: {'; '.join(e.errors)}", 500)
    except Exception as e:
        logger.exception("Upload failed")
        return _error("unknown_error", str(e) or "アップロードに失敗しました。", 500)


@require_http_methods(["GET"])
def health(request: HttpRequest) -> JsonResponse:
    """Liveness probe."""
    return JsonResponse({"ok": True})
