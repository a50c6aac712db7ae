"""
Interdex YAML Archiver
======================
File-backed Archiver: one YAML document per task.

File layout:
    {prefix}{name}{suffix}[.{qualifier-segment}]*.{ext}

    YamlArchiver("/data/idx/", "")  with metadata ["index", "pab"]
        -> /data/idx/index.pab.yml

Locking:
  - pull opens the document first, then holds a SHARED lock on "<file>.lock"
    for the duration of the read. A missing document fails before any lock
    file is created.
  - push holds an EXCLUSIVE lock on "<file>.lock" for the duration of the
    write. The document is written to a temporary file in the same directory
    and renamed over the target, so a reader never observes a partially
    written document even if it bypasses the lock.
  - Lock files stay on disk once created; they hold no data.

Documents are read as bytes and PyYAML detects the encoding, so a file that
is not valid UTF-8/UTF-16 is a DataFormatError like any other bad document.

Errors:
  - OSError of any kind (missing file, permission, lock timeout) -> TaskFailError
  - undecodable / unencodable document -> DataFormatError (from the codec)
"""

import os
import tempfile
import time
from typing import Any, Optional, Tuple

from concurrency.file_lock import FileLock, LockType
from runtime.config import runtime_config
from runtime.log import get_logger
from storage.codec import DocumentCodec
from storage.tasks import (
    Archiver, PullTask, PushTask, TaskFailError, metadata_parts,
)

LOCK_SUFFIX = ".lock"

logger = get_logger("storage.yaml_archiver")


class YamlArchiver(Archiver):
    """
    Usage:
        archiver = YamlArchiver(prefix="/data/idx/")
        archiver.push(PushTask("index", {"count": 0}))
        task = PullTask("index")
        archiver.pull(task)
        task.payload        # {"count": 0}
    """

    def __init__(self, prefix: Optional[str] = None, suffix: Optional[str] = None, *,
                 codec: Optional[DocumentCodec] = None,
                 ext: Optional[str] = None,
                 delay: Optional[float] = None,
                 locking: Optional[bool] = None,
                 lock_timeout: Optional[float] = None):
        config = runtime_config()
        self.prefix = prefix or ""
        self.suffix = suffix or ""
        self.codec = codec if codec is not None else DocumentCodec()
        self.ext = (ext if ext is not None else config.archive_ext).lstrip(".")
        self.delay = config.archiver_delay if delay is None else delay
        self.locking = config.locking if locking is None else locking
        self.lock_timeout = lock_timeout

    # ─── Paths ───────────────────────────────────────────────────────

    def file_parts(self, metadata: Any) -> Tuple[str, str]:
        """Return (name, dotted qualifier) for metadata."""
        name, qualifier = metadata_parts(metadata)
        return name, "".join("." + part for part in qualifier)

    def path_for(self, metadata: Any) -> str:
        name, qualifier = self.file_parts(metadata)
        return f"{self.prefix}{name}{self.suffix}{qualifier}.{self.ext}"

    # ─── Archiver ────────────────────────────────────────────────────

    def pull(self, task: PullTask) -> None:
        path = self.path_for(task.metadata)
        try:
            with open(path, "rb") as f:
                with self._lock(path, LockType.SHARED):
                    self._pause()
                    document = self.codec.load(f, source=path)
        except OSError as e:
            raise TaskFailError(f"Could not read {path}: {e}") from e
        task.payload = document
        logger.debug("Pulled %s", path)

    def push(self, task: PushTask) -> None:
        path = self.path_for(task.metadata)
        directory = os.path.dirname(os.path.abspath(path))
        try:
            with self._lock(path, LockType.EXCLUSIVE):
                self._pause()
                fd, tmp_path = tempfile.mkstemp(
                    prefix=".tmp-", suffix="." + self.ext, dir=directory)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        self.codec.dump(task.payload, f, source=task.metadata)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_path, path)
                finally:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
        except OSError as e:
            raise TaskFailError(f"Could not write {path}: {e}") from e
        logger.debug("Pushed %s", path)

    # ─── Internal ────────────────────────────────────────────────────

    def _lock(self, path: str, lock_type: LockType) -> FileLock:
        return FileLock(path + LOCK_SUFFIX, lock_type,
                        timeout=self.lock_timeout, enabled=self.locking)

    def _pause(self) -> None:
        if self.delay > 0:
            time.sleep(self.delay)
