"""Exclusive per-key file locks with a bounded wait."""

from __future__ import annotations

import sys
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

from task_recovery.exceptions import CircuitLockTimeoutError, StateStoreError

if sys.platform != "win32":
    import fcntl

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_POLL_INTERVAL_SECONDS = 0.05


@contextmanager
def key_lock(lock_path: Path, timeout: float = 5.0) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``lock_path`` for the duration of the block.

    The lock file is created if needed and left in place afterwards;
    deleting it while another process waits on it would let two holders in.

    Args:
        lock_path: Lock file, usually ``<key>.lock`` beside the record.
        timeout: Maximum seconds to wait for the lock.

    Raises:
        CircuitLockTimeoutError: If the lock is still held by someone else
            after ``timeout`` seconds.
        StateStoreError: If the lock file cannot be created or opened.
    """
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_fd = lock_path.open("a")
    except OSError as exc:
        raise StateStoreError(f"Cannot open lock file {lock_path}") from exc
    deadline = time.monotonic() + timeout

    with lock_fd:
        while True:
            try:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    logger.error(
                        "lock_timeout", lock_path=str(lock_path), timeout=timeout
                    )
                    raise CircuitLockTimeoutError(lock_path.stem, timeout) from None
                time.sleep(_POLL_INTERVAL_SECONDS)

        try:
            yield
        finally:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
