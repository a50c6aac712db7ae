"""
Interdex: Demand-Paged Prefix-Tree Index
========================================
Entry point for demos and maintenance of a persisted index.

Usage:
    python main.py [options] [index_path]

Options:
    --help              Show help
    --demo N            Build an index of N random terms, deflate it,
                        reopen it and verify every entry
    --dump              Print every entry of a persisted index

Default:
    --demo 1024 with the index at ./interdex_data
"""

import logging
import os
import sys
import uuid
from typing import List, Optional

from indexing.entry import ContentLocator, Entry
from indexing.incomplete_tree import IncompletePrefixTreeMap
from indexing.prefix_key import TokenKey
from runtime.config import runtime_config
from storage.tasks import TaskAbortError
from storage.yaml_archiver import YamlArchiver


def print_help():
    print("""
Interdex: Demand-Paged Prefix-Tree Index

Usage:
    python main.py [index_path]                Run the default demo (1024 terms)
    python main.py --demo N [index_path]       Build, deflate, reopen and verify N terms
    python main.py --dump [index_path]         Print entries of a persisted index

Options:
    --help          Show this help
    --demo N        Number of random terms for the demo
    --dump          Dump an existing index and exit
    index_path      Directory holding the index files (default: ./interdex_data)
""")


def _archiver(index_path: str) -> YamlArchiver:
    os.makedirs(index_path, exist_ok=True)
    return YamlArchiver(prefix=os.path.join(index_path, ""))


def _open_tree(index_path: str) -> IncompletePrefixTreeMap:
    return IncompletePrefixTreeMap.open(
        TokenKey, _archiver(index_path),
        value_encoder=Entry.to_doc, value_decoder=Entry.from_doc,
    )


def run_demo(index_path: str, count: int) -> int:
    """
    Build a tree of `count` random terms, deflate it, reopen it from disk
    and check that every entry came back. Returns a process exit code.
    """
    tree = IncompletePrefixTreeMap(TokenKey, value_encoder=Entry.to_doc,
                                   value_decoder=Entry.from_doc)
    tree.set_serialiser(_archiver(index_path))

    expected = {}
    for _ in range(count):
        term = str(uuid.uuid4())
        key = TokenKey(term)
        entry = Entry(term, ContentLocator(f"CHK@{term}"))
        tree.put(key, entry)
        expected[str(key)] = entry

    meta = tree.deflate()
    print(f"Deflated {len(tree)} entries to {meta!r}")

    reopened = _open_tree(index_path)
    loaded = {str(key): value for key, value in reopened.items()}
    if loaded != expected:
        missing = len(set(expected) - set(loaded))
        print(f"Error: reopened index differs ({missing} missing, "
              f"{len(loaded)} loaded, {len(expected)} expected)", file=sys.stderr)
        return 1

    issues = reopened.verify_structure()
    if issues:
        for issue in issues:
            print(f"Error: {issue}", file=sys.stderr)
        return 1

    print(f"Reopened {len(reopened)} entries; structure OK")
    return 0


def dump_index(index_path: str) -> int:
    """Print every entry of the index at index_path. Returns an exit code."""
    tree = _open_tree(index_path)
    for key, entry in tree.items():
        print(f"{key}\t{entry.name}\t{entry.locator}")
    print(f"-- {len(tree)} entries")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Parse CLI arguments and dispatch."""
    args = sys.argv[1:] if argv is None else argv

    if "--help" in args or "-h" in args:
        print_help()
        return 0

    logging.basicConfig(level=runtime_config().log_level,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    index_path = None
    demo_count = 1024
    dump = False

    i = 0
    while i < len(args):
        if args[i] == "--demo" and i + 1 < len(args):
            try:
                demo_count = int(args[i + 1])
            except ValueError:
                print(f"Invalid count: {args[i + 1]}", file=sys.stderr)
                return 1
            i += 2
        elif args[i] == "--dump":
            dump = True
            i += 1
        elif args[i].startswith("-"):
            print(f"Unknown option: {args[i]}", file=sys.stderr)
            print_help()
            return 1
        else:
            index_path = args[i]
            i += 1

    if index_path is None:
        index_path = os.path.join(os.getcwd(), "interdex_data")

    try:
        if dump:
            return dump_index(index_path)
        return run_demo(index_path, demo_count)
    except TaskAbortError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
