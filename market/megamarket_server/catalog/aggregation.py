"""
Price aggregation for catalog categories.

A category has no price of its own. Its effective price is the average
price of every offer below it, at any depth, rounded down:

    A (CATEGORY)
    ├── B (CATEGORY)
    │   ├── offer 100
    │   └── offer 200        price(B) = 300 // 2 = 150
    └── offer 300            price(A) = 600 // 3 = 200

The average is over offers, not over immediate children, so a subcategory
weighs as much as the number of offers it holds. Sums stay exact integers
through the whole walk and are divided once, when a price is read.

Invariants:
    - Offer price is its stored price
    - A category without offers (or without children) has price 0
    - One walk of the by-parent index prices the whole subtree

How to change safely:
    - Keep the walk iterative, catalog trees can be deep
    - The orchestrator guarantees the tree has no cycles; do not add a
      second guard here
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from ..store import Node, NodeKind, NodeSession


@dataclass
class PriceTotals:
    """Sum and count of the offers in one subtree."""

    total: int = 0
    offers: int = 0

    @property
    def average(self) -> int:
        if self.offers == 0:
            return 0
        return self.total // self.offers


@dataclass
class Subtree:
    """A node with every descendant, collected in one pass.

    Attributes:
        root: The node the walk started from
        nodes: Every node of the subtree in depth-first pre-order
        children: Direct children per category id
        totals: Offer totals per node id
    """

    root: Node
    nodes: list[Node] = field(default_factory=list)
    children: dict[UUID, list[Node]] = field(default_factory=dict)
    totals: dict[UUID, PriceTotals] = field(default_factory=dict)

    def price_of(self, node_id: UUID) -> int:
        return self.totals[node_id].average

    def offer_count(self, node_id: UUID) -> int:
        return self.totals[node_id].offers


def collect_subtree(session: NodeSession, root: Node) -> Subtree:
    """Walk the subtree of root and total the offer prices of every node.

    Args:
        session: Open store session
        root: Node to start from

    Returns:
        Subtree with children and totals for every node
    """
    subtree = Subtree(root=root)
    stack = [root]
    while stack:
        node = stack.pop()
        subtree.nodes.append(node)
        if node.kind is NodeKind.CATEGORY:
            kids = session.children_of(node.node_id)
            subtree.children[node.node_id] = kids
            stack.extend(reversed(kids))

    # Reverse pre-order visits every child before its parent.
    for node in reversed(subtree.nodes):
        if node.kind is NodeKind.OFFER:
            subtree.totals[node.node_id] = PriceTotals(total=node.price or 0, offers=1)
            continue
        totals = PriceTotals()
        for child in subtree.children[node.node_id]:
            child_totals = subtree.totals[child.node_id]
            totals.total += child_totals.total
            totals.offers += child_totals.offers
        subtree.totals[node.node_id] = totals

    return subtree


def effective_price(session: NodeSession, node: Node) -> int:
    """Get the price of a node: stored for offers, derived for categories."""
    if node.kind is NodeKind.OFFER:
        return node.price or 0
    return collect_subtree(session, node).price_of(node.node_id)
