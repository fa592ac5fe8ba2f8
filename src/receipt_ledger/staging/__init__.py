"""
Staging Store Adapter.

Provides:
- List pending receipts (oldest first, capped per run)
- Fetch raw bytes
- Idempotent move from unprocessed to processed
- Upload into the unprocessed zone

Backends: Google Drive folders (production) and local directories.
"""

from .base import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    FileTooLargeError,
    MoveError,
    StagedFile,
    StagingError,
    StagingStore,
    UnsupportedFileError,
    check_upload,
    file_extension,
    is_supported_file,
)
from .drive import GoogleDriveStagingStore
from .local import LocalFolderStagingStore

__all__ = [
    "ALLOWED_EXTENSIONS",
    "ALLOWED_MIME_TYPES",
    "FileTooLargeError",
    "GoogleDriveStagingStore",
    "LocalFolderStagingStore",
    "MoveError",
    "StagedFile",
    "StagingError",
    "StagingStore",
    "UnsupportedFileError",
    "check_upload",
    "file_extension",
    "is_supported_file",
]
