"""
Single-writer lock for pipeline passes.

Store files and the usage counter are read-modify-write documents with no
merge logic, so only one process may run a pass against a data directory at
a time. The lock is an advisory ``fcntl.flock`` taken non-blocking: a second
process gets LockBusyError and skips its pass instead of waiting.
"""

from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from curator.memory.models import LockBusyError


@contextmanager
def exclusive_lock(lock_path: str | Path) -> Iterator[Path]:
    """Hold an exclusive advisory lock on ``lock_path`` for the duration of the block."""
    path = Path(lock_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(str(path), os.O_CREAT | os.O_RDWR, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise LockBusyError(f"another process holds {path}") from e

        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
