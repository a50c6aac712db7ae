"""
Interdex Indexing Module
========================
Demand-paged prefix-tree index.

Components:
  - prefix_key: PrefixKey capability set and concrete key kinds
  - prefix_tree: fully materialized PrefixTreeMap
  - incomplete_tree: IncompletePrefixTreeMap with per-subtree deflate/inflate
  - entry: Entry / ContentLocator leaf payloads
"""
