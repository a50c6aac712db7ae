"""
Interdex File Lock
==================
Advisory shared/exclusive locks on a lock file, via POSIX flock(2).

Design rules:
  - SHARED is compatible with SHARED; EXCLUSIVE conflicts with everything.
  - Each FileLock opens its own descriptor, so two FileLocks on the same path
    conflict even inside one process (flock locks belong to the open file
    description, not to the process).
  - Lock scope is exactly the `with` block; the lock is released and the
    descriptor closed on every exit path.
  - timeout=None blocks; otherwise LOCK_NB is polled until the deadline and
    TimeoutError (an OSError) is raised.
"""

import fcntl
import os
import time
from enum import Enum
from typing import IO, Optional


class LockType(Enum):
    SHARED = "SHARED"
    EXCLUSIVE = "EXCLUSIVE"


_FLOCK_OPS = {
    LockType.SHARED: fcntl.LOCK_SH,
    LockType.EXCLUSIVE: fcntl.LOCK_EX,
}

_POLL_INTERVAL = 0.01


class FileLock:
    """
    Context manager holding a flock on `path` (created if missing).

    Usage:
        with FileLock("data.yml.lock", LockType.EXCLUSIVE):
            ...write data.yml...
    """

    def __init__(self, path: str, lock_type: LockType,
                 timeout: Optional[float] = None, enabled: bool = True):
        self.path = os.path.abspath(path)
        self.lock_type = lock_type
        self.timeout = timeout
        self.enabled = enabled
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            raise RuntimeError(f"Lock on {self.path} already held")
        handle = open(self.path, "a")
        try:
            if self.enabled:
                self._flock(handle)
        except BaseException:
            handle.close()
            raise
        self._handle = handle

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            if self.enabled:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def _flock(self, handle: IO[str]) -> None:
        op = _FLOCK_OPS[self.lock_type]
        if self.timeout is None:
            fcntl.flock(handle.fileno(), op)
            return

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), op | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise TimeoutError(
                        f"Timed out after {self.timeout}s waiting for "
                        f"{self.lock_type.value} lock on {self.path}") from None
                time.sleep(_POLL_INTERVAL)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
