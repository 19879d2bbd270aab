"""Process-wide advisory lock."""

import fcntl
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class LockError(Exception):
    """Another process holds the lock, or the lock file is unusable."""

    pass


class LockFile:
    """Exclusive, non-blocking lockf() lock held for an engine's lifetime."""

    def __init__(self, path: Path):
        self.path = path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o640)
        except OSError as e:
            raise LockError(f"Could not create lock file {self.path}: {e}") from e

        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise LockError(f"Could not lock {self.path}: {e}") from e

        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.lockf(self._fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Unlock of {self.path} failed: {e}")
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *args):
        self.release()
