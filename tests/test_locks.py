"""Tests for the advisory run lock."""

import pytest

from receipt_ledger.ledger_store import CRON_LOCK_KEY, LockContention, RunLock
from receipt_ledger.ledger_store.locks import lock_path_for


class TestRunLock:
    """Tests for RunLock."""

    def test_lock_path(self, temp_db) -> None:
        path = lock_path_for(temp_db, CRON_LOCK_KEY)
        assert path.parent == temp_db.parent
        assert path.name == f"{temp_db.name}.lock-9991337"

    def test_acquire_and_release(self, temp_db) -> None:
        lock = RunLock(temp_db)
        assert lock.try_acquire()
        assert lock.held
        lock.release()
        assert not lock.held

    def test_second_holder_rejected(self, temp_db) -> None:
        """At most one run holds the lock at a time."""
        first = RunLock(temp_db)
        second = RunLock(temp_db)

        assert first.try_acquire()
        try:
            assert not second.try_acquire()
            assert not second.held
        finally:
            first.release()

    def test_reacquire_after_release(self, temp_db) -> None:
        first = RunLock(temp_db)
        second = RunLock(temp_db)

        assert first.try_acquire()
        first.release()

        assert second.try_acquire()
        second.release()

    def test_different_keys_independent(self, temp_db) -> None:
        first = RunLock(temp_db, key=1)
        second = RunLock(temp_db, key=2)

        assert first.try_acquire()
        try:
            assert second.try_acquire()
            second.release()
        finally:
            first.release()

    def test_acquire_when_already_held(self, temp_db) -> None:
        lock = RunLock(temp_db)
        assert lock.try_acquire()
        assert lock.try_acquire()
        lock.release()

    def test_release_is_idempotent(self, temp_db) -> None:
        lock = RunLock(temp_db)
        lock.release()
        lock.try_acquire()
        lock.release()
        lock.release()
        assert not lock.held

    def test_context_manager(self, temp_db) -> None:
        with RunLock(temp_db) as lock:
            assert lock.held
            with pytest.raises(LockContention) as exc_info:
                with RunLock(temp_db):
                    pass
            assert exc_info.value.key == CRON_LOCK_KEY
        assert not lock.held
