"""
Input and result types of the catalog service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from ..store import Node, NodeKind


@dataclass(frozen=True)
class NodeInput:
    """One imported item, already parsed by the boundary layer.

    Attributes:
        node_id: Node identifier
        name: Display name
        kind: Offer or category
        price: Required for offers, forbidden for categories
        parent_id: Optional parent category id
    """

    node_id: UUID
    name: str
    kind: NodeKind
    price: int | None = None
    parent_id: UUID | None = None


@dataclass
class NodeView:
    """A node as returned by get_by_id.

    Attributes:
        node: Stored node
        price: Effective price (0 for a category without offers)
        offer_count: Offers in the subtree (1 for an offer)
        children: Direct children for categories, None for offers
    """

    node: Node
    price: int
    offer_count: int
    children: list[NodeView] | None = None


@dataclass
class ImportResult:
    """Outcome of one import batch."""

    created: list[UUID] = field(default_factory=list)
    updated: list[UUID] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated)
