"""
Interdex Memory Archiver
========================
Dict-backed Archiver for tests and throwaway indexes.

Payloads are deep-copied on push and on pull, so neither side can mutate
what the other holds. Metadata is normalised through metadata_parts(), so
"index" and ["index"] address the same slot.
"""

import copy
import threading
from typing import Any, Dict, Tuple

from storage.tasks import (
    Archiver, PullTask, PushTask, TaskFailError, metadata_parts,
)


class MemoryArchiver(Archiver):

    def __init__(self):
        self._lock = threading.Lock()
        self._store: Dict[Tuple[str, Tuple[str, ...]], Dict[str, Any]] = {}
        self.pulls = 0
        self.pushes = 0

    def pull(self, task: PullTask) -> None:
        slot = metadata_parts(task.metadata)
        with self._lock:
            if slot not in self._store:
                raise TaskFailError(f"No payload stored for {task.metadata!r}")
            task.payload = copy.deepcopy(self._store[slot])
            self.pulls += 1

    def push(self, task: PushTask) -> None:
        slot = metadata_parts(task.metadata)
        payload = copy.deepcopy(task.payload)
        with self._lock:
            self._store[slot] = payload
            self.pushes += 1

    def __contains__(self, metadata: Any) -> bool:
        with self._lock:
            return metadata_parts(metadata) in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def discard(self, metadata: Any) -> None:
        with self._lock:
            self._store.pop(metadata_parts(metadata), None)
