"""
Staging store interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

ALLOWED_MIME_TYPES = ("image/jpeg", "application/pdf")
ALLOWED_EXTENSIONS = ("jpg", "jpeg", "pdf")


class StagingError(Exception):
    """Base exception for staging store failures.

    Carries optional HTTP-ish status, backend error code and an operator hint
    so the upload endpoint can surface them as {code, message, hint}.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.status = status
        self.code = code
        self.hint = hint
        super().__init__(message)


class MoveError(StagingError):
    """Relocating a file to the processed area failed."""
    pass


class UnsupportedFileError(StagingError):
    """File type is not an allowed receipt format."""
    pass


class FileTooLargeError(StagingError):
    """File exceeds the configured byte ceiling."""
    pass


@dataclass
class StagedFile:
    """A receipt file in the staging area."""

    id: str
    name: str
    mime_type: str
    size: Optional[int] = None
    created_time: Optional[str] = None  # ISO timestamp
    # Location marker(s); Drive parent folder IDs or the local zone name
    parents: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to the public upload response shape."""
        return {"id": self.id, "name": self.name, "mimeType": self.mime_type}


def file_extension(name: str) -> str:
    """Lowercase extension without the dot ('' if none)."""
    if "." not in (name or ""):
        return ""
    return name.rsplit(".", 1)[-1].lower()


def is_supported_file(name: str, mime_type: str) -> bool:
    """Both the MIME type and the extension must be allowed."""
    mime_ok = (mime_type or "").lower() in ALLOWED_MIME_TYPES
    ext_ok = file_extension(name) in ALLOWED_EXTENSIONS
    return mime_ok and ext_ok


def check_upload(name: str, mime_type: str, size: int, max_bytes: int) -> None:
    """
    Validate an incoming file before it is staged.

    Raises:
        UnsupportedFileError: Extension or MIME type is not jpg/jpeg/pdf
        FileTooLargeError: File is larger than max_bytes
    """
    if not is_supported_file(name, mime_type):
        raise UnsupportedFileError(
            f"{name} は許可されていない形式です。jpg/jpeg/pdf のみ。",
            status=400,
            code="unsupported_type",
            hint="拡張子と MIME タイプが jpg/jpeg/pdf であることを確認してください。",
        )
    if size > max_bytes:
        raise FileTooLargeError(
            f"{name} が最大サイズ({max_bytes} bytes)を超えています。",
            status=413,
            code="file_too_large",
        )


class StagingStore(ABC):
    """
    Two-zone staging area for receipt files: unprocessed and processed.

    A file lives in exactly one zone. move_to_processed is the only state
    transition and must be idempotent. The pipeline never deletes files.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logging."""
        pass

    @abstractmethod
    def list_pending(self, limit: int) -> list[StagedFile]:
        """
        List unprocessed files, oldest first.

        Args:
            limit: Maximum number of files to return

        Returns:
            Files in creation-time ascending order
        """
        pass

    @abstractmethod
    def fetch(self, file_id: str) -> bytes:
        """Download the raw bytes of a staged file."""
        pass

    @abstractmethod
    def move_to_processed(self, file_id: str, parents: Optional[list[str]] = None) -> None:
        """
        Move a file from unprocessed to processed.

        Calling this for a file that is already processed is a no-op.

        Args:
            file_id: Staged file identifier
            parents: Current location hints, if known

        Raises:
            MoveError: If the file could not be relocated
        """
        pass

    def close(self) -> None:
        """Release network resources held by the store, if any."""
        pass

    @abstractmethod
    def upload(self, name: str, mime_type: str, data: bytes) -> StagedFile:
        """Store a new file in the unprocessed zone."""
        pass

    def is_supported(self, file: StagedFile) -> bool:
        """Check whether a staged file is an allowed receipt format."""
        return is_supported_file(file.name, file.mime_type)
