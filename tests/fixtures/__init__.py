"""
In-memory collaborators for pipeline tests.

- FakeStagingStore: two-zone staging area with injectable move failures
- FakeAnalyzer: canned model output (or exceptions) keyed by file name
- FakeLock: run lock with a fixed acquire result
"""

from typing import Any, Optional

from receipt_ledger.receipt_ai import AnalysisResult
from receipt_ledger.schemas import ReceiptExtraction
from receipt_ledger.staging import MoveError, StagedFile, StagingStore


class FakeStagingStore(StagingStore):
    """Dict-backed staging store."""

    def __init__(self):
        self.pending: dict[str, StagedFile] = {}
        self.contents: dict[str, bytes] = {}
        self.processed: dict[str, StagedFile] = {}
        self.fetched: list[str] = []
        self.moves: list[str] = []
        self.list_calls = 0
        # file_id -> number of upcoming move attempts that fail
        self.move_failures: dict[str, int] = {}
        self.list_error: Optional[Exception] = None
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    def close(self) -> None:
        self.closed = True

    def add(
        self,
        file_id: str,
        name: str,
        mime_type: str = "image/jpeg",
        data: bytes = b"\xff\xd8receipt",
        size: Optional[int] = None,
    ) -> StagedFile:
        staged = StagedFile(
            id=file_id,
            name=name,
            mime_type=mime_type,
            size=len(data) if size is None else size,
            parents=["unprocessed"],
        )
        self.pending[file_id] = staged
        self.contents[file_id] = data
        return staged

    def list_pending(self, limit: int) -> list[StagedFile]:
        self.list_calls += 1
        if self.list_error:
            raise self.list_error
        return list(self.pending.values())[:limit]

    def fetch(self, file_id: str) -> bytes:
        self.fetched.append(file_id)
        return self.contents[file_id]

    def move_to_processed(self, file_id: str, parents: Optional[list[str]] = None) -> None:
        self.moves.append(file_id)
        if self.move_failures.get(file_id, 0) > 0:
            self.move_failures[file_id] -= 1
            raise MoveError(f"Simulated move failure for {file_id}", status=503)
        if file_id in self.pending:
            self.processed[file_id] = self.pending.pop(file_id)
            return
        if file_id in self.processed:
            return
        raise MoveError(f"Unknown file {file_id}", status=404)

    def upload(self, name: str, mime_type: str, data: bytes) -> StagedFile:
        return self.add(f"up-{len(self.contents) + 1}", name, mime_type, data)


class FakeAnalyzer:
    """Returns canned model output per file name."""

    def __init__(self, responses: Optional[dict[str, Any]] = None):
        self.responses = responses or {}
        self.calls: list[str] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def analyze(self, file_bytes: bytes, mime_type: str, file_name: Optional[str] = None):
        self.calls.append(file_name)
        response = self.responses[file_name]
        if isinstance(response, Exception):
            raise response
        return AnalysisResult(
            parsed=ReceiptExtraction.from_dict(response),
            raw=response,
            model="fake-model",
            attempts=1,
        )


class FakeLock:
    """Run lock that always answers the same way."""

    def __init__(self, available: bool = True):
        self.available = available
        self.acquired = 0
        self.released = 0

    def try_acquire(self) -> bool:
        if self.available:
            self.acquired += 1
        return self.available

    def release(self) -> None:
        self.released += 1
