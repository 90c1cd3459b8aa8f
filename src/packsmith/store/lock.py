"""
Advisory lock around registry mutations.

add, update, remove and sync each hold `<home>/.lock` for their whole
duration. The lock is never waited on: a second process fails immediately
with LockHeldError.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from packsmith.errors import LockHeldError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".lock"


@contextmanager
def registry_lock(home: Path) -> Iterator[FileLock]:
    """
    Hold the registry lock for the duration of the block.

    Raises:
        LockHeldError: If another process holds the lock
    """
    home.mkdir(parents=True, exist_ok=True)
    lock_path = home / LOCK_FILE_NAME
    lock = FileLock(str(lock_path))
    try:
        lock.acquire(timeout=0)
    except Timeout:
        raise LockHeldError(path=str(lock_path)) from None

    logger.debug("Acquired registry lock %s", lock_path)
    try:
        yield lock
    finally:
        lock.release()
