"""Tests for curator/memory/locking.py"""

import pytest

from curator.memory.locking import exclusive_lock
from curator.memory.models import LockBusyError


def test_second_holder_is_refused(tmp_path):
    lock_path = tmp_path / "data" / "pipeline.lock"

    with exclusive_lock(lock_path):
        assert lock_path.exists()
        with pytest.raises(LockBusyError):
            with exclusive_lock(lock_path):
                pass


def test_released_after_block(tmp_path):
    lock_path = tmp_path / "pipeline.lock"

    with exclusive_lock(lock_path):
        pass

    with exclusive_lock(lock_path) as held:
        assert held == lock_path


def test_released_when_block_raises(tmp_path):
    lock_path = tmp_path / "pipeline.lock"

    with pytest.raises(RuntimeError):
        with exclusive_lock(lock_path):
            raise RuntimeError("boom")

    with exclusive_lock(lock_path):
        pass
