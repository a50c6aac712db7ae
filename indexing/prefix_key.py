"""
Interdex Prefix Keys
====================
Fixed-alphabet symbol sequences used to address trie entries by shared prefix.

Capability set (every concrete key kind provides it):
  symbols()     alphabet size (arity), a class-level constant
  size()        key length
  get(i)        symbol at position i
  set(i, v)     overwrite position i with symbol v
  clear(i)      reset position i to symbol 0
  clone()       independent deep copy
  ordering      lexicographic over the symbol sequence; a key that is a
                prefix of another sorts before it

Positions are bounds-checked against [0, size()) and raise IndexError.
Symbol values must lie in [0, symbols()) and raise ValueError otherwise.

Concrete kinds form a closed set:
  - StringKey / LowercaseKey: a string decomposed over an alphabet
  - TokenKey: MD5 digest of a term, one hex digit per symbol
"""

import copy
import hashlib
import string
from abc import ABC, abstractmethod
from functools import total_ordering
from typing import Iterable, List, Optional, Sequence, Tuple


@total_ordering
class PrefixKey(ABC):
    """Base for all key kinds. Holds the symbol list; subclasses fix the arity."""
    __slots__ = ("_symbols",)

    def __init__(self, symbols: Iterable[int] = ()):
        arity = self.symbols()
        checked: List[int] = []
        for v in symbols:
            _check_symbol(v, arity)
            checked.append(v)
        self._symbols = checked

    @classmethod
    @abstractmethod
    def symbols(cls) -> int:
        """Alphabet size."""

    @classmethod
    def from_symbols(cls, symbols: Sequence[int]) -> "PrefixKey":
        """Rebuild a key of this kind from raw symbols (used by decoders)."""
        key = cls.__new__(cls)
        PrefixKey.__init__(key, symbols)
        key._rebuilt()
        return key

    @classmethod
    def format_symbols(cls, symbols: Sequence[int]) -> str:
        """Render a symbol path as a filename-safe string."""
        return "-".join(str(s) for s in symbols)

    # ─── Capability set ──────────────────────────────────────────────

    def size(self) -> int:
        return len(self._symbols)

    def get(self, i: int) -> int:
        self._check_index(i)
        return self._symbols[i]

    def set(self, i: int, v: int) -> None:
        self._check_index(i)
        _check_symbol(v, self.symbols())
        self._symbols[i] = v
        self._rebuilt()

    def clear(self, i: int) -> None:
        self._check_index(i)
        self._symbols[i] = 0
        self._rebuilt()

    def clone(self) -> "PrefixKey":
        other = copy.copy(self)
        other._symbols = list(self._symbols)
        return other

    def symbol_tuple(self) -> Tuple[int, ...]:
        return tuple(self._symbols)

    # ─── Ordering ────────────────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrefixKey) or other.symbols() != self.symbols():
            return NotImplemented
        return self._symbols == other._symbols

    def __lt__(self, other: "PrefixKey") -> bool:
        if not isinstance(other, PrefixKey) or other.symbols() != self.symbols():
            return NotImplemented
        # list comparison is lexicographic, shorter prefix first
        return self._symbols < other._symbols

    __hash__ = None  # keys are mutable

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r})"

    def __str__(self) -> str:
        return self.format_symbols(self._symbols)

    # ─── Internal ────────────────────────────────────────────────────

    def _check_index(self, i: int) -> None:
        if not isinstance(i, int) or not 0 <= i < len(self._symbols):
            raise IndexError(f"Key position {i} out of range [0, {len(self._symbols)})")

    def _rebuilt(self) -> None:
        """Hook run after the symbol list changed outside __init__."""


def _check_symbol(v: int, arity: int) -> None:
    if isinstance(v, bool) or not isinstance(v, int) or not 0 <= v < arity:
        raise ValueError(f"Symbol {v!r} outside alphabet [0, {arity})")


# ─── String keys ─────────────────────────────────────────────────────────

class StringKey(PrefixKey):
    """A string decomposed into one symbol per character of ALPHABET."""
    __slots__ = ()

    ALPHABET: str = ""

    def __init__(self, text: str = ""):
        index = self._index()
        try:
            symbols = [index[ch] for ch in text]
        except KeyError as exc:
            raise ValueError(
                f"Character {exc.args[0]!r} not in {type(self).__name__} alphabet") from None
        super().__init__(symbols)

    @classmethod
    def symbols(cls) -> int:
        return len(cls.ALPHABET)

    @classmethod
    def format_symbols(cls, symbols: Sequence[int]) -> str:
        return "".join(cls.ALPHABET[s] for s in symbols)

    @classmethod
    def _index(cls) -> dict:
        cached = cls.__dict__.get("_INDEX")
        if cached is None:
            cached = {ch: i for i, ch in enumerate(cls.ALPHABET)}
            setattr(cls, "_INDEX", cached)
        return cached

    @property
    def text(self) -> str:
        return self.format_symbols(self._symbols)


class LowercaseKey(StringKey):
    """Lowercase ASCII words, arity 26."""
    __slots__ = ()

    ALPHABET = string.ascii_lowercase


# ─── Token keys ──────────────────────────────────────────────────────────

class TokenKey(PrefixKey):
    """
    Search-term token: the MD5 digest of a term, one hex digit per symbol.

    Every token has 32 symbols of arity 16, so terms spread evenly over the
    trie regardless of their spelling. The source term is kept for display
    and dropped once the symbols are edited.
    """
    __slots__ = ("term",)

    HEX_DIGITS = "0123456789abcdef"
    LENGTH = 32

    def __init__(self, term: str = ""):
        digest = hashlib.md5(term.encode("utf-8")).hexdigest()
        super().__init__(int(ch, 16) for ch in digest)
        self.term: Optional[str] = term

    @classmethod
    def symbols(cls) -> int:
        return 16

    @classmethod
    def format_symbols(cls, symbols: Sequence[int]) -> str:
        return "".join(cls.HEX_DIGITS[s] for s in symbols)

    def _rebuilt(self) -> None:
        self.term = None

    def __repr__(self) -> str:
        if self.term is not None:
            return f"TokenKey({self.term!r})"
        return f"TokenKey.from_symbols({str(self)!r})"
