"""
Interdex Incomplete Prefix Tree Map
===================================
A PrefixTreeMap whose subtrees can be evicted to, and demand-loaded from,
an Archiver.

Paging states of an internal node:

    MATERIALIZED --deflate--> DEFLATING --push ok--> DEFLATED
         ^                        |                     |
         |                     push fails               |
         |                        v                     |
         +--------------- MATERIALIZED                  |
         |                                              |
         +--pull ok-- INFLATING <-------inflate---------+
                          |
                      pull fails --> DEFLATED (unchanged)

  - A DEFLATED node keeps its prefix, its archive metadata token and the
    entry count of its subtree; its members are not in memory.
  - get/put/remove/iteration inflate any DEFLATED node whose members they
    need. Nothing is deflated automatically; eviction is the caller's call.
  - The node latch is held for the whole transition, so at most one inflate
    or deflate is in flight per node. Deflate also latches every
    materialized descendant (top-down) before encoding them.

Metadata tokens:
  root       -> name                      e.g. "index"
  non-root   -> (name, "p" + prefix path) e.g. ("index", "pab")

Document (format version 1):
  {"format_version": 1, "key_type": "LowercaseKey", "arity": 26,
   "count": 3, "nodes": [<record>, ...]}
  internal:  {"prefix": [symbols], "terminal": <leaf>, "leaves": [<leaf>...]}
  reference: {"prefix": [symbols], "meta": <token>, "count": n}
  leaf:      {"key": [symbols], "value": <encoded value>}

  Records are the subtree's internal nodes in preorder, the deflated node
  first. Each record hangs under the nearest earlier record whose prefix it
  extends, so the document stays flat however deep the trie is.

Errors:
  - DataFormatError / TaskFailError from the archiver propagate unchanged.
  - InflateError / DeflateError: paging cannot proceed (no serialiser bound,
    pull completed without a payload, document for another key kind or node).
  - A document that lacks its header, or does not describe a valid subtree,
    raises DataFormatError.
"""

from contextlib import ExitStack
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from indexing.prefix_key import PrefixKey
from indexing.prefix_tree import (
    Leaf, Member, NodeState, PrefixTreeMap, StructuralError, TrieNode,
)
from runtime.log import get_logger
from storage.tasks import Archiver, DataFormatError, PullTask, PushTask

FORMAT_VERSION = 1

logger = get_logger("indexing.incomplete_tree")


class InflateError(Exception):
    """Raised when a reference-only node cannot be loaded."""
    pass


class DeflateError(Exception):
    """Raised when a subtree cannot be evicted."""
    pass


def _identity(value: Any) -> Any:
    return value


class IncompletePrefixTreeMap(PrefixTreeMap):
    """
    Usage:
        tree = IncompletePrefixTreeMap(TokenKey,
                                       value_encoder=Entry.to_doc,
                                       value_decoder=Entry.from_doc)
        tree.set_serialiser(YamlArchiver(prefix="/data/idx/"))
        tree.put(TokenKey("apple"), Entry("apple", "CHK@..."))
        tree.deflate()                          # evict the whole tree
        tree.get(TokenKey("apple"))             # inflates the root again

        # later, in another process
        tree = IncompletePrefixTreeMap.open(TokenKey, YamlArchiver(prefix="/data/idx/"))
    """

    def __init__(self, key_type: Type[PrefixKey], *, name: str = "index",
                 value_encoder: Optional[Callable[[Any], Any]] = None,
                 value_decoder: Optional[Callable[[Any], Any]] = None):
        super().__init__(key_type)
        if not isinstance(name, str) or not name:
            raise ValueError(f"Archive name must be a non-empty string, got {name!r}")
        self._name = name
        self._serialiser: Optional[Archiver] = None
        self._encode_value = value_encoder or _identity
        self._decode_value = value_decoder or _identity

    @classmethod
    def open(cls, key_type: Type[PrefixKey], archiver: Archiver, *, name: str = "index",
             value_encoder: Optional[Callable[[Any], Any]] = None,
             value_decoder: Optional[Callable[[Any], Any]] = None) -> "IncompletePrefixTreeMap":
        """Reopen a tree whose root was previously deflated under `name`."""
        tree = cls(key_type, name=name,
                   value_encoder=value_encoder, value_decoder=value_decoder)
        tree.set_serialiser(archiver)
        root = tree.root
        root.state = NodeState.DEFLATED
        root.meta = name
        tree.inflate(root)
        tree._size = tree._count_subtree(root)
        return tree

    @property
    def name(self) -> str:
        return self._name

    @property
    def serialiser(self) -> Optional[Archiver]:
        return self._serialiser

    def set_serialiser(self, archiver: Archiver) -> None:
        if not isinstance(archiver, Archiver):
            raise TypeError(f"Expected an Archiver, got {type(archiver).__name__}")
        self._serialiser = archiver

    # ─── Node lookup ─────────────────────────────────────────────────

    def node_for(self, prefix: PrefixKey) -> Optional[TrieNode]:
        """
        Return the topmost internal node covering every key that starts
        with `prefix`, or None when no internal node does (no such keys,
        or a single leaf). Nodes on the way down are inflated; the returned
        node itself is left in whatever state it is in.
        """
        syms = self._symbols_of(prefix)
        node = self._root
        if not syms:
            return node
        node.latch.acquire()
        try:
            while True:
                self._materialize(node)
                child = node.children.get(syms[node.depth])
                if not isinstance(child, TrieNode):
                    return None
                m = min(len(syms), child.depth)
                if child.prefix[:m] != syms[:m]:
                    return None
                if child.depth >= len(syms):
                    return child
                child.latch.acquire()
                node.latch.release()
                node = child
        finally:
            node.latch.release()

    def is_materialized(self, node: Optional[TrieNode] = None) -> bool:
        node = self._root if node is None else node
        return node.is_materialized

    def metadata_for(self, node: TrieNode) -> Any:
        """Archive metadata token derived from the node's key path."""
        if not node.prefix:
            return self._name
        return (self._name, "p" + self._key_type.format_symbols(node.prefix))

    # ─── Inflate ─────────────────────────────────────────────────────

    def inflate(self, node: Optional[TrieNode] = None) -> bool:
        """
        Load a DEFLATED node (default: root) from the serialiser.
        Returns True if the node was loaded, False if it was already in memory.
        """
        node = self._root if node is None else node
        with node.latch:
            self._check_attached(node)
            if node.state != NodeState.DEFLATED:
                return False
            self._inflate_locked(node)
            return True

    def _materialize(self, node: TrieNode) -> None:
        if node.state == NodeState.DEFLATED:
            self._inflate_locked(node)
        super()._materialize(node)

    def _inflate_locked(self, node: TrieNode) -> None:
        """Pull and decode node's subtree. Caller holds node.latch."""
        archiver = self._serialiser
        if archiver is None:
            raise InflateError(f"No serialiser set; cannot inflate {node.meta!r}")

        task = PullTask(node.meta)
        node.state = NodeState.INFLATING
        try:
            archiver.pull(task)
            if task.payload is None:
                raise InflateError(f"Pull of {node.meta!r} completed without a payload")
            loaded, count = self._decode_document(task.payload, node)
        except Exception as e:
            node.state = NodeState.DEFLATED
            logger.warning("Inflate of %r failed: %s", node.meta, e)
            raise

        if node is not self._root and count != node.count:
            logger.warning("Subtree %r holds %d entries, parent recorded %d",
                           node.meta, count, node.count)
            self._adjust_size(count - node.count)

        node.children = loaded.children
        node.terminal = loaded.terminal
        node.meta = None
        node.count = 0
        node.state = NodeState.MATERIALIZED
        logger.debug("Inflated %r (%d entries)", task.metadata, count)

    # ─── Deflate ─────────────────────────────────────────────────────

    def deflate(self, node: Optional[TrieNode] = None) -> Any:
        """
        Push a MATERIALIZED node (default: root) to the serialiser and drop
        its members from memory. Returns the node's metadata token.
        Already-deflated nodes are left alone.
        """
        node = self._root if node is None else node
        archiver = self._serialiser
        if archiver is None:
            raise DeflateError("No serialiser set; cannot deflate")

        with ExitStack() as latches:
            latches.enter_context(node.latch)
            self._check_attached(node)
            if node.state == NodeState.DEFLATED:
                return node.meta
            if not node.is_materialized:
                raise StructuralError(f"Node {node.prefix} observed in state {node.state.value}")
            self._latch_subtree(node, latches)

            meta = self.metadata_for(node)
            count = self._count_subtree(node)
            document = {
                "format_version": FORMAT_VERSION,
                "key_type": self._key_type.__name__,
                "arity": self._key_type.symbols(),
                "count": count,
                "nodes": self._encode_nodes(node),
            }

            node.state = NodeState.DEFLATING
            try:
                archiver.push(PushTask(meta, document))
            except Exception as e:
                node.state = NodeState.MATERIALIZED
                logger.warning("Deflate of %r failed: %s", meta, e)
                raise

            node.children = {}
            node.terminal = None
            node.meta = meta
            node.count = count
            node.state = NodeState.DEFLATED
            logger.debug("Deflated %r (%d entries)", meta, count)
            return meta

    def _latch_subtree(self, node: TrieNode, latches: ExitStack) -> None:
        """Acquire latches of all materialized descendants, parents first."""
        stack = [node]
        while stack:
            current = stack.pop()
            for child in current.children.values():
                if isinstance(child, TrieNode):
                    latches.enter_context(child.latch)
                    if child.is_materialized:
                        stack.append(child)

    def _count_subtree(self, node: TrieNode) -> int:
        count = 0
        stack = [node]
        while stack:
            current = stack.pop()
            if current.state == NodeState.DEFLATED:
                count += current.count
                continue
            if current.terminal is not None:
                count += 1
            for child in current.children.values():
                if isinstance(child, Leaf):
                    count += 1
                else:
                    stack.append(child)
        return count

    # ─── Document encoding ───────────────────────────────────────────

    def _encode_leaf(self, leaf: Leaf) -> Dict[str, Any]:
        return {"key": list(leaf.symbols), "value": self._encode_value(leaf.value)}

    def _encode_nodes(self, node: TrieNode) -> List[Dict[str, Any]]:
        """Flatten node's subtree into records, parents before children."""
        records: List[Dict[str, Any]] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.state == NodeState.DEFLATED:
                meta = current.meta
                if isinstance(meta, (list, tuple)):
                    meta = list(meta)
                records.append({"prefix": list(current.prefix), "meta": meta,
                                "count": current.count})
                continue

            record: Dict[str, Any] = {"prefix": list(current.prefix)}
            if current.terminal is not None:
                record["terminal"] = self._encode_leaf(current.terminal)
            members = sorted(current.children.items())
            record["leaves"] = [self._encode_leaf(m) for _, m in members if isinstance(m, Leaf)]
            records.append(record)
            # reversed, so the smallest symbol is emitted first
            stack.extend(m for _, m in reversed(members) if isinstance(m, TrieNode))
        return records

    def _decode_document(self, document: Dict[str, Any], node: TrieNode) -> Tuple[TrieNode, int]:
        """Decode a pulled document into a detached TrieNode standing in for node."""
        missing = [k for k in ("format_version", "key_type", "arity", "nodes") if k not in document]
        if missing:
            raise DataFormatError(
                f"Document {node.meta!r} lacks {', '.join(missing)}", node.meta)
        if document["format_version"] != FORMAT_VERSION:
            raise DataFormatError(
                f"Unsupported document format version: {document['format_version']!r}",
                node.meta)
        key_type = document["key_type"]
        if key_type != self._key_type.__name__ or document["arity"] != self._key_type.symbols():
            raise InflateError(
                f"Document {node.meta!r} holds {key_type} keys, expected {self._key_type.__name__}")

        records = document["nodes"]
        if not isinstance(records, list) or not records:
            raise DataFormatError(f"Document {node.meta!r} holds no nodes", node.meta)
        try:
            loaded = self._decode_record(records[0])
            if loaded.prefix != node.prefix:
                raise InflateError(
                    f"Document {node.meta!r} describes node {loaded.prefix}, expected {node.prefix}")
            if loaded.state == NodeState.DEFLATED:
                raise DataFormatError(f"Document {node.meta!r} is only a reference", node.meta)
            self._attach_records(loaded, records[1:])
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise DataFormatError(f"Malformed subtree document {node.meta!r}: {e!r}", node.meta) from e
        return loaded, self._count_subtree(loaded)

    def _attach_records(self, top: TrieNode, records: List[Any]) -> None:
        """
        Link decoded records under top. A record's parent is the nearest
        open node whose prefix it extends; records arrive parents first.
        """
        open_nodes = [top]
        for record in records:
            node = self._decode_record(record)
            while open_nodes and not self._extends(node.prefix, open_nodes[-1]):
                open_nodes.pop()
            if not open_nodes:
                raise ValueError(f"node {node.prefix} does not extend prefix {top.prefix}")
            self._link(open_nodes[-1], node, node.prefix)
            if node.is_materialized:
                open_nodes.append(node)

    def _decode_record(self, record: Dict[str, Any]) -> TrieNode:
        if not isinstance(record, dict):
            raise TypeError(f"node record must be a mapping, got {type(record).__name__}")
        node = self._new_node(self._key_type.from_symbols(record["prefix"]).symbol_tuple())
        if "meta" in record:
            meta = record["meta"]
            node.meta = tuple(meta) if isinstance(meta, list) else meta
            node.count = int(record["count"])
            node.state = NodeState.DEFLATED
            return node

        terminal = record.get("terminal")
        if terminal is not None:
            leaf = self._decode_leaf(terminal)
            if leaf.symbols != node.prefix:
                raise ValueError(f"terminal does not match prefix {node.prefix}")
            node.terminal = leaf
        for leaf_doc in record["leaves"]:
            leaf = self._decode_leaf(leaf_doc)
            self._link(node, leaf, leaf.symbols)
        return node

    def _decode_leaf(self, doc: Dict[str, Any]) -> Leaf:
        if not isinstance(doc, dict):
            raise TypeError(f"leaf record must be a mapping, got {type(doc).__name__}")
        key = self._key_type.from_symbols(doc["key"])
        return Leaf(key, self._decode_value(doc["value"]))

    @staticmethod
    def _extends(syms: Tuple[int, ...], node: TrieNode) -> bool:
        return len(syms) > node.depth and syms[:node.depth] == node.prefix

    def _link(self, parent: TrieNode, member: Member, syms: Tuple[int, ...]) -> None:
        if not self._extends(syms, parent):
            raise ValueError(f"member {syms} does not extend prefix {parent.prefix}")
        slot = syms[parent.depth]
        if slot in parent.children:
            raise ValueError(f"two members under {parent.prefix}[{slot}]")
        parent.children[slot] = member

    # ─── Internal ────────────────────────────────────────────────────

    def _check_attached(self, node: TrieNode) -> None:
        if node.detached:
            raise StructuralError(f"Node {node.prefix} is no longer part of the tree")
