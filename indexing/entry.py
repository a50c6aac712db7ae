"""
Interdex Entries
================
Leaf payloads: a name plus an opaque content locator.

A ContentLocator has the form <KIND>@<body>, e.g. "CHK@yeah". It is kept as
a strong type so archivers can tag it, but it is never resolved here.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict

_LOCATOR_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*@\S*$")


class ContentLocator:
    """Immutable, validated locator string."""
    __slots__ = ("_value",)

    def __init__(self, value: str):
        if not isinstance(value, str) or not _LOCATOR_RE.match(value):
            raise ValueError(f"Malformed content locator: {value!r}")
        self._value = value

    @property
    def kind(self) -> str:
        return self._value.split("@", 1)[0]

    @property
    def body(self) -> str:
        return self._value.split("@", 1)[1]

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"ContentLocator({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContentLocator):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)


@dataclass(frozen=True)
class Entry:
    name: str
    locator: ContentLocator

    def __post_init__(self):
        if not isinstance(self.name, str):
            raise TypeError(f"Entry name must be a string, got {type(self.name).__name__}")
        if isinstance(self.locator, str):
            object.__setattr__(self, "locator", ContentLocator(self.locator))
        elif not isinstance(self.locator, ContentLocator):
            raise TypeError(f"Entry locator must be a ContentLocator, got {type(self.locator).__name__}")

    def to_doc(self) -> Dict[str, Any]:
        """Document form; the locator stays typed for the archive codec."""
        return {"name": self.name, "locator": self.locator}

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Entry":
        if not isinstance(doc, dict):
            raise TypeError(f"Entry document must be a mapping, got {type(doc).__name__}")
        return cls(name=doc["name"], locator=doc["locator"])
