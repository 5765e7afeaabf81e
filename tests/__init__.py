"""
Megamarket Test Suite.

This package contains:
- unit/: Unit tests (store, aggregation, propagation)
- integration/: Integration tests (CatalogService on SQLite, HTTP API)
"""
