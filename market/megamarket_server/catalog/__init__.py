"""
Catalog module for Megamarket - the tree engine.

This module handles:
- Derived category prices (aggregation)
- Ancestor timestamp propagation on create/update
- Batch import, cascading delete and sales queries (CatalogService)

Invariants:
    - Category prices are always computed, never stored
    - Propagation runs on create/update only, never on delete
    - Every write runs inside one store transaction

How to change safely:
    - Keep tree walks iterative
    - Validate a whole batch before writing any of it
"""

from .aggregation import PriceTotals, Subtree, collect_subtree, effective_price
from .models import ImportResult, NodeInput, NodeView
from .propagation import PropagationResult, propagate_timestamp
from .service import MAX_PRICE, SALES_WINDOW, CatalogService, normalize_timestamp

__all__ = [
    "CatalogService",
    "ImportResult",
    "MAX_PRICE",
    "NodeInput",
    "NodeView",
    "PriceTotals",
    "PropagationResult",
    "SALES_WINDOW",
    "Subtree",
    "collect_subtree",
    "effective_price",
    "normalize_timestamp",
    "propagate_timestamp",
]
