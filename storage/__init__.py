"""
Interdex Storage Layer
======================
Persistence boundary for the paged trie.

Usage:
    from storage import PullTask, PushTask, Archiver, YamlArchiver
    from storage import DataFormatError, TaskFailError
"""

from storage.tasks import (
    Archiver, PullTask, PushTask, metadata_parts,
    TaskAbortError, DataFormatError, TaskFailError,
)
from storage.codec import DocumentCodec, LOCATOR_TAG
from storage.yaml_archiver import YamlArchiver
from storage.memory_archiver import MemoryArchiver

__all__ = [
    "Archiver", "PullTask", "PushTask", "metadata_parts",
    "TaskAbortError", "DataFormatError", "TaskFailError",
    "DocumentCodec", "LOCATOR_TAG",
    "YamlArchiver", "MemoryArchiver",
]
