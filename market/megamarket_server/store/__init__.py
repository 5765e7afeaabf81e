"""
Store module for Megamarket - durable node storage.

This module handles:
- The catalog SQLite database (one row per node)
- The by-parent index used by aggregation and cascading delete
- Transaction boundaries for all reads and writes

Invariants:
    - Nodes reference parents by id; the store owns the tree
    - Writes run under BEGIN IMMEDIATE, reads under one snapshot

How to change safely:
    - Test schema migrations thoroughly before deployment
    - Use transactions for all multi-statement operations
"""

from .node_store import Node, NodeKind, NodeSession, NodeStore, from_unix_ms, to_unix_ms

__all__ = [
    "Node",
    "NodeKind",
    "NodeSession",
    "NodeStore",
    "from_unix_ms",
    "to_unix_ms",
]
