"""
Interdex Prefix Tree Map
========================
Ordered map over PrefixKey, stored as a compressed trie.

Node types:
  - Leaf: a full key and its value.
  - TrieNode (internal): the common prefix shared by every key beneath it,
    children indexed by the symbol that follows the prefix, and an optional
    terminal leaf for the key that ends exactly at the prefix.

Invariants:
  - The root's prefix is empty. Every other internal node has at least two
    members (children + terminal); removal compacts nodes left with one.
  - A child stored under symbol s of node N extends N.prefix by s.
  - Sibling order is symbol order, and a terminal sorts before all children,
    so a depth-first walk yields keys in strictly increasing order.

Concurrency:
  Each internal node owns a latch. Operations descend with latch coupling
  (acquire child, then release parent), so writers in disjoint subtrees do
  not block each other. Removal holds the parent latch one level longer
  because compaction rewrites the parent's child slot.

Paging:
  Internal nodes carry a NodeState. This map never pages; it only calls the
  _materialize() hook before reading a node, which subclasses override to
  load reference-only nodes.
"""

import threading
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, Union

from indexing.prefix_key import PrefixKey


class StructuralError(Exception):
    """Raised when a trie invariant is found broken."""
    pass


class NodeState(Enum):
    MATERIALIZED = "MATERIALIZED"
    INFLATING = "INFLATING"
    DEFLATING = "DEFLATING"
    DEFLATED = "DEFLATED"


# ─── Nodes ───────────────────────────────────────────────────────────────

class Leaf:
    """A stored entry. `symbols` caches key.symbol_tuple()."""
    __slots__ = ("key", "symbols", "value")

    def __init__(self, key: PrefixKey, value: Any, symbols: Optional[Tuple[int, ...]] = None):
        self.key = key
        self.symbols = key.symbol_tuple() if symbols is None else symbols
        self.value = value

    def __repr__(self) -> str:
        return f"Leaf({self.key!r})"


Member = Union["TrieNode", Leaf]


class TrieNode:
    """
    Internal trie node.

    `count` is only meaningful while DEFLATED: the number of entries in the
    unloaded subtree. `meta` is the archive metadata token of a DEFLATED node.
    `detached` is set once compaction unlinks the node from the tree.
    """
    __slots__ = (
        "prefix", "children", "terminal", "state", "meta",
        "count", "detached", "latch",
    )

    def __init__(self, prefix: Tuple[int, ...] = ()):
        self.prefix: Tuple[int, ...] = tuple(prefix)
        self.children: Dict[int, Member] = {}
        self.terminal: Optional[Leaf] = None
        self.state: NodeState = NodeState.MATERIALIZED
        self.meta: Any = None
        self.count: int = 0
        self.detached: bool = False
        self.latch = threading.Lock()

    @property
    def depth(self) -> int:
        return len(self.prefix)

    @property
    def member_count(self) -> int:
        return len(self.children) + (1 if self.terminal is not None else 0)

    @property
    def is_materialized(self) -> bool:
        return self.state == NodeState.MATERIALIZED

    def members(self) -> List[Member]:
        """Members in key order: terminal first, then children by symbol."""
        ordered: List[Member] = [self.children[s] for s in sorted(self.children)]
        if self.terminal is not None:
            ordered.insert(0, self.terminal)
        return ordered

    def sole_member(self) -> Member:
        if self.member_count != 1:
            raise StructuralError(
                f"Node at depth {self.depth} has {self.member_count} members, expected 1")
        if self.terminal is not None:
            return self.terminal
        return next(iter(self.children.values()))

    def __repr__(self) -> str:
        return f"TrieNode(depth={self.depth}, state={self.state.value}, members={self.member_count})"


def _common_prefix_length(a: Tuple[int, ...], b: Tuple[int, ...]) -> int:
    n = min(len(a), len(b))
    for i in range(n):
        if a[i] != b[i]:
            return i
    return n


def _member_symbols(member: Member) -> Tuple[int, ...]:
    return member.symbols if isinstance(member, Leaf) else member.prefix


_MISSING = object()


# ─── Prefix Tree Map ─────────────────────────────────────────────────────

class PrefixTreeMap:
    """
    Fully materialized prefix-tree map.

    Usage:
        tree = PrefixTreeMap(LowercaseKey)
        tree.put(LowercaseKey("alpha"), 1)
        tree.get(LowercaseKey("alpha"))      # 1
        for key, value in tree.items():      # ascending key order
            ...
        tree.remove(LowercaseKey("alpha"))
    """

    def __init__(self, key_type: Type[PrefixKey]):
        if not (isinstance(key_type, type) and issubclass(key_type, PrefixKey)):
            raise TypeError(f"key_type must be a PrefixKey subclass, got {key_type!r}")
        self._key_type = key_type
        self._root = self._new_node(())
        self._size = 0
        self._size_lock = threading.Lock()

    @property
    def key_type(self) -> Type[PrefixKey]:
        return self._key_type

    @property
    def root(self) -> TrieNode:
        return self._root

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: PrefixKey) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __iter__(self) -> Iterator[PrefixKey]:
        return self.keys()

    # ─── Lookup ──────────────────────────────────────────────────────

    def get(self, key: PrefixKey, default: Any = None) -> Any:
        """Return the value stored under key, or default if absent."""
        syms = self._symbols_of(key)
        node = self._root
        node.latch.acquire()
        try:
            while True:
                self._materialize(node)
                d = node.depth
                if len(syms) == d:
                    return node.terminal.value if node.terminal is not None else default
                child = node.children.get(syms[d])
                if child is None:
                    return default
                if isinstance(child, Leaf):
                    return child.value if child.symbols == syms else default
                if syms[:child.depth] != child.prefix:
                    return default
                child.latch.acquire()
                node.latch.release()
                node = child
        finally:
            node.latch.release()

    # ─── Insert ──────────────────────────────────────────────────────

    def put(self, key: PrefixKey, value: Any) -> Any:
        """
        Store value under key. Returns the previous value, or None.

        Descends along the longest common prefix. When the key diverges
        inside a child's prefix (or from a stored leaf), a new internal
        node is spliced in at the first differing symbol.
        """
        syms = self._symbols_of(key)
        node = self._root
        node.latch.acquire()
        try:
            while True:
                self._materialize(node)
                d = node.depth
                if len(syms) == d:
                    if node.terminal is None:
                        node.terminal = Leaf(key.clone(), value, syms)
                        self._adjust_size(1)
                        return None
                    old = node.terminal.value
                    node.terminal.value = value
                    return old

                sym = syms[d]
                child = node.children.get(sym)
                if child is None:
                    node.children[sym] = Leaf(key.clone(), value, syms)
                    self._adjust_size(1)
                    return None

                if isinstance(child, Leaf):
                    if child.symbols == syms:
                        old = child.value
                        child.value = value
                        return old
                    n = _common_prefix_length(child.symbols, syms)
                    node.children[sym] = self._split(child, n, key, syms, value)
                    self._adjust_size(1)
                    return None

                n = _common_prefix_length(child.prefix, syms)
                if n == child.depth:
                    child.latch.acquire()
                    node.latch.release()
                    node = child
                    continue
                node.children[sym] = self._split(child, n, key, syms, value)
                self._adjust_size(1)
                return None
        finally:
            node.latch.release()

    def _split(self, existing: Member, n: int, key: PrefixKey,
               syms: Tuple[int, ...], value: Any) -> TrieNode:
        """
        Build the internal node that replaces `existing` in its parent:
        prefix = first n symbols, members = existing + a new leaf for key.
        `existing` itself is not modified, so it may be reference-only.
        """
        existing_syms = _member_symbols(existing)
        if n >= len(existing_syms) and n >= len(syms):
            raise StructuralError(f"Split of identical keys at {n}")
        if isinstance(existing, TrieNode) and n >= existing.depth:
            raise StructuralError(f"Split point {n} not inside prefix of depth {existing.depth}")

        branch = self._new_node(syms[:n])
        if len(existing_syms) == n:
            branch.terminal = existing
        else:
            branch.children[existing_syms[n]] = existing

        leaf = Leaf(key.clone(), value, syms)
        if len(syms) == n:
            branch.terminal = leaf
        else:
            branch.children[syms[n]] = leaf
        return branch

    # ─── Remove ──────────────────────────────────────────────────────

    def remove(self, key: PrefixKey) -> Any:
        """
        Delete key and return its value. Absent keys are a no-op (None).

        After deletion a non-root node left with a single member is replaced
        in its parent by that member, keeping the tree canonical.
        """
        syms = self._symbols_of(key)
        parent: Optional[TrieNode] = None
        node = self._root
        node.latch.acquire()
        try:
            while True:
                self._materialize(node)
                d = node.depth
                if len(syms) == d:
                    leaf = node.terminal
                    if leaf is None:
                        return None
                    node.terminal = None
                    self._compact(parent, node)
                    self._adjust_size(-1)
                    return leaf.value

                sym = syms[d]
                child = node.children.get(sym)
                if child is None:
                    return None
                if isinstance(child, Leaf):
                    if child.symbols != syms:
                        return None
                    del node.children[sym]
                    self._compact(parent, node)
                    self._adjust_size(-1)
                    return child.value
                if syms[:child.depth] != child.prefix:
                    return None

                child.latch.acquire()
                if parent is not None:
                    parent.latch.release()
                parent, node = node, child
        finally:
            node.latch.release()
            if parent is not None:
                parent.latch.release()

    def _compact(self, parent: Optional[TrieNode], node: TrieNode) -> None:
        """Merge node into parent if it is left with one member. Both latched."""
        if parent is None:
            return  # root may have any number of members
        if node.member_count == 0:
            raise StructuralError(f"Non-root node at depth {node.depth} left empty")
        if node.member_count > 1:
            return
        sole = node.sole_member()
        slot = node.prefix[parent.depth]
        if parent.children.get(slot) is not node:
            raise StructuralError(f"Node at depth {node.depth} not found under its parent")
        parent.children[slot] = sole
        node.children = {}
        node.terminal = None
        node.detached = True

    # ─── Iteration ───────────────────────────────────────────────────

    def items(self) -> Iterator[Tuple[PrefixKey, Any]]:
        """
        Lazily yield (key, value) pairs in strictly increasing key order.

        Each call starts a fresh walk. Nodes are snapshotted one at a time
        under their latch, so concurrent writers may or may not be observed.
        """
        pending: List[Iterator[Member]] = [iter([self._root])]
        while pending:
            member = next(pending[-1], None)
            if member is None:
                pending.pop()
                continue
            if isinstance(member, Leaf):
                yield member.key.clone(), member.value
            else:
                pending.append(iter(self._snapshot(member)))

    def keys(self) -> Iterator[PrefixKey]:
        for key, _ in self.items():
            yield key

    def values(self) -> Iterator[Any]:
        for _, value in self.items():
            yield value

    def _snapshot(self, node: TrieNode) -> List[Member]:
        with node.latch:
            self._materialize(node)
            return node.members()

    # ─── Verification ────────────────────────────────────────────────

    def verify_structure(self) -> List[str]:
        """
        Check the trie invariants over the materialized part of the tree.
        Returns a list of issues found (empty = healthy). Never pages.
        """
        issues: List[str] = []
        if self._root.prefix:
            issues.append("Root prefix is not empty")

        counted = 0
        stack = [self._root]
        if self._root.state == NodeState.DEFLATED:
            counted, stack = self._root.count, []
        while stack:
            node = stack.pop()
            counted += self._verify_node(node, issues, is_root=node is self._root)
            stack.extend(c for c in node.children.values()
                         if isinstance(c, TrieNode) and c.is_materialized)
        if counted != self._size:
            issues.append(f"Entry count {counted} does not match size {self._size}")
        return issues

    def _verify_node(self, node: TrieNode, issues: List[str], is_root: bool = False) -> int:
        """Check one node. Returns the entries it holds outside materialized child nodes."""
        if not node.is_materialized:
            issues.append(f"Node {node.prefix} observed in state {node.state.value}")
            return 0
        if not is_root and node.member_count < 2:
            issues.append(f"Node {node.prefix} has {node.member_count} member(s)")

        count = 0
        arity = self._key_type.symbols()
        if node.terminal is not None:
            count += 1
            if node.terminal.symbols != node.prefix:
                issues.append(f"Terminal under {node.prefix} has key {node.terminal.symbols}")
        for sym, child in node.children.items():
            if not 0 <= sym < arity:
                issues.append(f"Symbol {sym} under {node.prefix} outside alphabet")
            child_syms = _member_symbols(child)
            if (len(child_syms) <= node.depth
                    or child_syms[:node.depth] != node.prefix
                    or child_syms[node.depth] != sym):
                issues.append(f"Member {child_syms} misplaced under {node.prefix}[{sym}]")
            if isinstance(child, Leaf):
                count += 1
                if not isinstance(child.key, self._key_type):
                    issues.append(f"Leaf {child.symbols} holds a {type(child.key).__name__}")
            else:
                if child.detached:
                    issues.append(f"Detached node {child.prefix} still linked")
                if child.state == NodeState.DEFLATED:
                    count += child.count
                elif not child.is_materialized:
                    issues.append(f"Node {child.prefix} observed in state {child.state.value}")
        return count

    # ─── Hooks / helpers ─────────────────────────────────────────────

    def _materialize(self, node: TrieNode) -> None:
        """Make node's members readable. Caller holds node.latch."""
        if not node.is_materialized:
            raise StructuralError(
                f"{type(self).__name__} cannot read node {node.prefix} in state {node.state.value}")

    def _new_node(self, prefix: Tuple[int, ...]) -> TrieNode:
        return TrieNode(prefix)

    def _symbols_of(self, key: PrefixKey) -> Tuple[int, ...]:
        if not isinstance(key, self._key_type):
            raise TypeError(
                f"Expected {self._key_type.__name__} key, got {type(key).__name__}")
        return key.symbol_tuple()

    def _adjust_size(self, delta: int) -> None:
        with self._size_lock:
            self._size += delta
