"""
Megamarket Server - catalog of offers and categories.

This package implements a product catalog arranged as a tree:
- Offers are leaves with a fixed price
- Categories are internal nodes whose price is derived from their subtree
- SQLite holds the nodes; an index by parent id holds the tree

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│  CatalogService │
    │             │     │  (FastAPI)  │     │                 │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                             ┌───────────────────────┼───────────────┐
                             │                       │               │
                             ▼                       ▼               ▼
                      ┌─────────────┐        ┌─────────────┐  ┌─────────────┐
                      │ Aggregation │        │ Propagation │  │  NodeStore  │
                      │  (prices)   │        │ (timestamps)│  │  (SQLite)   │
                      └─────────────┘        └─────────────┘  └─────────────┘

Invariants:
    - A node's kind never changes
    - Category prices are computed on read, never stored
    - Create/update propagate the update date to every ancestor
    - Delete cascades to the subtree and does not touch ancestors

How to change safely:
    - Keep tree rules in catalog/, not in the HTTP layer
    - Keep all writes inside one store transaction
"""

from ._version import __version__

__all__ = ["__version__"]
