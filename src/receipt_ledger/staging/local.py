"""
Local filesystem staging store.

Layout:
    <root>/unprocessed/   pending receipts
    <root>/processed/     receipts already posted to the ledger
    <root>/.incoming/     upload scratch space (same filesystem)

The file name is the identifier. Moves use os.replace, which is an atomic rename
within one filesystem, so a file is never visible in both zones. A pending file
whose name is already taken in processed/ by different content is refused with
MoveError, so a reused name surfaces as a processing error.
"""

import filecmp
import logging
import mimetypes
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .base import MoveError, StagedFile, StagingError, StagingStore

logger = logging.getLogger(__name__)

UNPROCESSED_DIR = "unprocessed"
PROCESSED_DIR = "processed"
INCOMING_DIR = ".incoming"


def _guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


class LocalFolderStagingStore(StagingStore):
    """Staging store backed by two sibling directories."""

    def __init__(self, root: Path | str):
        """
        Initialize the store, creating the zone directories if needed.

        Args:
            root: Directory holding the unprocessed/ and processed/ zones
        """
        self.root = Path(root)
        self.unprocessed_dir = self.root / UNPROCESSED_DIR
        self.processed_dir = self.root / PROCESSED_DIR
        self.incoming_dir = self.root / INCOMING_DIR
        for directory in (self.unprocessed_dir, self.processed_dir, self.incoming_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    def _checked_name(self, file_id: str) -> str:
        if not file_id or Path(file_id).name != file_id or file_id.startswith("."):
            raise StagingError(f"Invalid staged file id: {file_id!r}", status=400)
        return file_id

    def _to_staged_file(self, path: Path, zone: str) -> StagedFile:
        stat = path.stat()
        created = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return StagedFile(
            id=path.name,
            name=path.name,
            mime_type=_guess_mime_type(path.name),
            size=stat.st_size,
            created_time=created.isoformat(),
            parents=[zone],
        )

    def list_pending(self, limit: int) -> list[StagedFile]:
        entries = [
            p for p in self.unprocessed_dir.iterdir() if p.is_file() and not p.name.startswith(".")
        ]
        entries.sort(key=lambda p: (p.stat().st_mtime, p.name))
        return [self._to_staged_file(p, UNPROCESSED_DIR) for p in entries[:limit]]

    def fetch(self, file_id: str) -> bytes:
        path = self.unprocessed_dir / self._checked_name(file_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise StagingError(f"Staged file not found: {file_id}", status=404, code="not_found")

    def move_to_processed(self, file_id: str, parents: Optional[list[str]] = None) -> None:
        name = self._checked_name(file_id)
        source = self.unprocessed_dir / name
        target = self.processed_dir / name

        if not source.exists():
            if target.exists():
                logger.debug("%s already in processed zone, nothing to move", name)
                return
            raise MoveError(f"Staged file not found in either zone: {name}", status=404)

        if target.exists():
            if not filecmp.cmp(source, target, shallow=False):
                # The name is already the ledger key of a different receipt
                raise MoveError(
                    f"A different file named {name} was already processed; "
                    "this one has not been posted",
                    status=409,
                    code="name_conflict",
                    hint="Rename the file in the unprocessed folder so it is processed "
                    "as a new receipt",
                )
            target = self._unique_path(self.processed_dir, name)
            logger.warning("Duplicate copy of %s, storing it as %s", name, target.name)

        try:
            os.replace(source, target)
        except OSError as e:
            raise MoveError(f"Failed to move {name} to processed: {e}") from e

        logger.info("Moved %s to processed", name)

    def upload(self, name: str, mime_type: str, data: bytes) -> StagedFile:
        safe_name = Path(name or "").name.lstrip(".")
        if not safe_name:
            raise StagingError("File name is empty", status=400, code="invalid_name")

        target = self.unprocessed_dir / safe_name
        if target.exists() or (self.processed_dir / safe_name).exists():
            target = self._unique_path(self.unprocessed_dir, safe_name)

        # Write to scratch first so list_pending never sees a partial file
        scratch = self.incoming_dir / f"{uuid.uuid4().hex}.part"
        try:
            scratch.write_bytes(data)
            os.replace(scratch, target)
        except OSError as e:
            scratch.unlink(missing_ok=True)
            raise StagingError(f"Failed to store {safe_name}: {e}", code="write_failed") from e

        staged = self._to_staged_file(target, UNPROCESSED_DIR)
        staged.mime_type = mime_type or staged.mime_type
        return staged

    def _unique_path(self, directory: Path, name: str) -> Path:
        stem, dot, ext = name.rpartition(".")
        if not dot:
            stem, ext = name, ""
        while True:
            suffix = uuid.uuid4().hex[:8]
            candidate = f"{stem}-{suffix}.{ext}" if ext else f"{stem}-{suffix}"
            path = directory / candidate
            if not path.exists() and not (self.processed_dir / candidate).exists():
                return path
