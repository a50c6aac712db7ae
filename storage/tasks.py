"""
Interdex Archiver Tasks
=======================
Push/pull task protocol between the trie and durable storage.

A task is a transient {metadata, payload} record created for one archive
call and discarded afterwards:
  - PullTask: payload starts as None; the archiver fills it on success.
  - PushTask: payload is supplied by the caller.

Metadata is either a bare name, or a sequence whose first element is a
name and whose remaining elements form a qualifier.

Failure taxonomy (both derive from TaskAbortError):
  - DataFormatError: the payload cannot be decoded or encoded.
  - TaskFailError:   I/O-level failure (missing resource, permission, lock).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


class TaskAbortError(Exception):
    """Base class for archiver task failures."""
    pass


class DataFormatError(TaskAbortError):
    """Raised when stored content cannot be decoded, or a payload encoded."""

    def __init__(self, message: str, source: Any = None):
        super().__init__(message)
        self.source = source


class TaskFailError(TaskAbortError):
    """Raised on I/O-level problems while running a task."""
    pass


@dataclass
class PullTask:
    metadata: Any
    payload: Optional[Dict[str, Any]] = None


@dataclass
class PushTask:
    metadata: Any
    payload: Dict[str, Any]


class Archiver(ABC):
    """Stores and loads opaque payloads identified by task metadata."""

    @abstractmethod
    def pull(self, task: PullTask) -> None:
        """Load the payload for task.metadata into task.payload."""

    @abstractmethod
    def push(self, task: PushTask) -> None:
        """Durably store task.payload under task.metadata."""


def metadata_parts(metadata: Any) -> Tuple[str, Tuple[str, ...]]:
    """
    Split metadata into (name, qualifier segments).

        "index"                 -> ("index", ())
        ["index", "pab", 2]     -> ("index", ("pab", "2"))
    """
    if isinstance(metadata, str):
        return metadata, ()
    if isinstance(metadata, (list, tuple)) and metadata and isinstance(metadata[0], str):
        return metadata[0], tuple(str(part) for part in metadata[1:])
    raise ValueError(f"Unsupported archive metadata: {metadata!r}")
