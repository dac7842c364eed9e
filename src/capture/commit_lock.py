"""Per-consumer mutual exclusion for offset mutation.

Locks are process-wide and keyed by data root and consumer id, so every
change log opened on the same data root shares them.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from core.errors import ConcurrentCommitConflictError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

_LOCKS: dict[tuple[Path, str], threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


@contextmanager
def hold_consumer_lock(data_root: Path, consumer_id: str, blocking: bool = False) -> Iterator[None]:
    """Hold the mutation lock of one consumer.

    Args:
        data_root: Data root the consumer lives under.
        consumer_id: Consumer identifier.
        blocking: Wait for the holder instead of failing fast.

    Raises:
        ConcurrentCommitConflictError: If not blocking and the lock is held.
    """
    lock = _lock_for(data_root, consumer_id)
    if not lock.acquire(blocking=blocking):
        _LOGGER.warning("commit_conflict", consumer_id=consumer_id)
        raise ConcurrentCommitConflictError(
            f"Another commit for consumer '{consumer_id}' is in flight. "
            "The next scheduler tick will pick up the pending records."
        )
    try:
        yield
    finally:
        lock.release()


def _lock_for(data_root: Path, consumer_id: str) -> threading.Lock:
    key = (data_root.resolve(), consumer_id)
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.Lock())
