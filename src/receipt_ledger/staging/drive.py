"""
Google Drive staging store.

Two Drive folders shared with a service account act as the unprocessed and
processed zones. Moving a file is a parent reassignment (addParents /
removeParents in one files.update call), so the file keeps its ID and is never
copied.

Folder IDs are resolved through Drive shortcuts before use, since operators
often paste the ID of a shortcut instead of the folder itself.
"""

import json
import logging
import uuid
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import MoveError, StagedFile, StagingError, StagingStore

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
TOKEN_URI = "https://oauth2.googleapis.com/token"

DRIVE_MIME_FOLDER = "application/vnd.google-apps.folder"
DRIVE_MIME_SHORTCUT = "application/vnd.google-apps.shortcut"

FILE_FIELDS = "id,name,mimeType,size,createdTime,parents"
MAX_SHORTCUT_DEPTH = 3
MAX_PAGE_SIZE = 1000  # Drive files.list upper bound


def _configure_retries(session: requests.Session, max_retries: int, backoff_factor: float) -> None:
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST", "PATCH"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)


class GoogleDriveStagingStore(StagingStore):
    """
    Staging store backed by two Google Drive folders.

    Features:
    - Shortcut-aware folder resolution (cached per store)
    - Shared Drive support (supportsAllDrives on every call)
    - Automatic retry with backoff for transient failures
    """

    DEFAULT_TIMEOUT = 60

    def __init__(
        self,
        unprocessed_folder_id: str,
        processed_folder_id: str,
        session: requests.Session,
        service_account_email: str = "",
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """
        Initialize Drive store.

        Args:
            unprocessed_folder_id: Folder (or shortcut) ID of the pending zone
            processed_folder_id: Folder (or shortcut) ID of the processed zone
            session: Authorized requests session
            service_account_email: Used in operator hints only
            timeout: Request timeout in seconds
        """
        self.unprocessed_folder_id = unprocessed_folder_id
        self.processed_folder_id = processed_folder_id
        self.session = session
        self.service_account_email = service_account_email
        self.timeout = timeout
        self._resolved: dict[str, str] = {}

    @classmethod
    def from_service_account(
        cls,
        email: str,
        private_key: str,
        unprocessed_folder_id: str,
        processed_folder_id: str,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ) -> "GoogleDriveStagingStore":
        """Build a store authenticated with service account credentials."""
        from google.auth.transport.requests import AuthorizedSession
        from google.oauth2 import service_account

        credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": email,
                "private_key": private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=[DRIVE_SCOPE],
        )
        session = AuthorizedSession(credentials)
        _configure_retries(session, max_retries, backoff_factor)
        return cls(
            unprocessed_folder_id=unprocessed_folder_id,
            processed_folder_id=processed_folder_id,
            session=session,
            service_account_email=email,
        )

    @property
    def name(self) -> str:
        return "drive"

    def close(self) -> None:
        """Close the authorized session and its connection pool."""
        self.session.close()

    def _share_hint(self) -> str:
        return " / ".join(
            [
                f"Share the unprocessed and processed folders with {self.service_account_email or 'the service account'} as editor",
                "For Shared Drives, add the service account as a member",
                "Use the folder's own ID, not a shortcut ID",
            ]
        )

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        hint: Optional[str] = None,
        error_class: type = StagingError,
        **kwargs: Any,
    ) -> requests.Response:
        """Make a Drive API request, converting failures to StagingError."""
        query = {"supportsAllDrives": "true"}
        if params:
            query.update(params)

        try:
            response = self.session.request(
                method=method, url=url, params=query, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise error_class(f"Drive request failed: {e}", status=502, hint=hint) from e

        if not response.ok:
            message = response.reason or "Drive API error"
            code = None
            try:
                error_body = response.json().get("error", {})
                message = error_body.get("message", message)
                errors = error_body.get("errors") or []
                if errors and isinstance(errors, list):
                    code = errors[0].get("reason")
            except (ValueError, AttributeError):
                pass
            logger.error(
                "Drive API %s %s failed: status=%s message=%s",
                method,
                url,
                response.status_code,
                message,
            )
            raise error_class(message, status=response.status_code, code=code, hint=hint)

        return response

    def resolve_folder_id(self, folder_id: str) -> str:
        """
        Follow shortcuts until reaching an actual folder.

        Raises:
            StagingError: If the ID is not a folder, the shortcut chain is broken
                or cyclic, or the folder is not visible to the service account
        """
        if folder_id in self._resolved:
            return self._resolved[folder_id]

        current_id = folder_id
        visited: set[str] = {folder_id}
        folder_hint = "Set the folder's own ID, not a shortcut or file ID"

        for _ in range(MAX_SHORTCUT_DEPTH):
            try:
                data = self._request(
                    "GET",
                    f"{DRIVE_API_URL}/files/{current_id}",
                    params={"fields": "id,name,mimeType,driveId,shortcutDetails"},
                    hint=self._share_hint(),
                ).json()
            except StagingError as e:
                if e.status == 404:
                    raise StagingError(
                        "Folder not found. The ID is wrong or the folder is not shared "
                        "with the service account.",
                        status=404,
                        code=e.code,
                        hint=self._share_hint(),
                    ) from e
                raise

            mime_type = data.get("mimeType")
            if mime_type == DRIVE_MIME_SHORTCUT:
                target_id = (data.get("shortcutDetails") or {}).get("targetId")
                if not target_id:
                    raise StagingError(
                        "Could not read the shortcut target.", status=400, hint=folder_hint
                    )
                if target_id in visited:
                    raise StagingError("Shortcut chain is cyclic.", status=400, hint=folder_hint)
                visited.add(target_id)
                current_id = target_id
                continue

            if mime_type != DRIVE_MIME_FOLDER:
                raise StagingError("The given ID is not a folder.", status=400, hint=folder_hint)

            resolved = data.get("id")
            if not resolved:
                raise StagingError("Could not resolve the folder ID.", status=400)

            self._resolved[folder_id] = resolved
            return resolved

        raise StagingError("Failed to resolve the shortcut chain.", status=400, hint=folder_hint)

    def _to_staged_file(self, data: dict) -> StagedFile:
        size = data.get("size")
        return StagedFile(
            id=data["id"],
            name=data["name"],
            mime_type=data["mimeType"],
            size=int(size) if size is not None else None,
            created_time=data.get("createdTime"),
            parents=list(data.get("parents") or []),
        )

    def list_pending(self, limit: int) -> list[StagedFile]:
        folder_id = self.resolve_folder_id(self.unprocessed_folder_id)
        pending: list[StagedFile] = []
        page_token: Optional[str] = None

        while len(pending) < limit:
            params = {
                "q": f"'{folder_id}' in parents and trashed=false",
                "orderBy": "createdTime asc",
                "pageSize": min(limit - len(pending), MAX_PAGE_SIZE),
                "fields": f"nextPageToken,files({FILE_FIELDS})",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token

            response = self._request(
                "GET", f"{DRIVE_API_URL}/files", params=params, hint=self._share_hint()
            )
            data = response.json()
            pending.extend(
                self._to_staged_file(f)
                for f in data.get("files") or []
                if f.get("id") and f.get("name") and f.get("mimeType")
            )

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return pending[:limit]

    def fetch(self, file_id: str) -> bytes:
        response = self._request(
            "GET",
            f"{DRIVE_API_URL}/files/{file_id}",
            params={"alt": "media"},
        )
        return response.content

    def move_to_processed(self, file_id: str, parents: Optional[list[str]] = None) -> None:
        processed_id = self.resolve_folder_id(self.processed_folder_id)
        move_hint = (
            f"Share the processed folder with {self.service_account_email or 'the service account'} "
            "and make sure the ID is not a shortcut"
        )

        metadata = self._request(
            "GET",
            f"{DRIVE_API_URL}/files/{file_id}",
            params={"fields": "id,parents"},
            hint=move_hint,
            error_class=MoveError,
        ).json()
        current_parents = list(metadata.get("parents") or parents or [])

        to_remove = [p for p in current_parents if p != processed_id]
        if processed_id in current_parents and not to_remove:
            logger.debug("Drive file %s already in processed folder", file_id)
            return

        params = {"removeParents": ",".join(to_remove)} if to_remove else {}
        if processed_id not in current_parents:
            params["addParents"] = processed_id

        self._request(
            "PATCH",
            f"{DRIVE_API_URL}/files/{file_id}",
            params=params,
            hint=move_hint,
            error_class=MoveError,
            json={},
        )
        logger.info("Moved Drive file %s to processed", file_id)

    def upload(self, name: str, mime_type: str, data: bytes) -> StagedFile:
        folder_id = self.resolve_folder_id(self.unprocessed_folder_id)
        metadata = {"name": name, "parents": [folder_id], "mimeType": mime_type}

        boundary = f"receipt-ledger-{uuid.uuid4().hex}"
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode("utf-8"),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {mime_type}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )

        response = self._request(
            "POST",
            f"{DRIVE_UPLOAD_URL}/files",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            hint=self._share_hint(),
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        created = response.json()
        created.setdefault("name", name)
        created.setdefault("mimeType", mime_type)
        created.setdefault("size", len(data))
        return self._to_staged_file(created)
