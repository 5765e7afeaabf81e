"""
Catalog service - create, update, delete and read catalog nodes.

The CatalogService is the only entry point the boundary layer calls. It
coordinates the node store, the aggregation engine and the propagation
engine, and it enforces the tree invariants on every write.

Invariants:
    - A node's kind never changes after creation
    - Offers carry a price >= 1, categories never carry one
    - Every parent_id resolves to an existing category
    - No node is its own ancestor
    - An import batch is applied entirely or not at all
    - Delete removes the whole subtree and leaves ancestor timestamps alone

How to change safely:
    - Keep every write inside one store transaction
    - Validate the whole batch before the first upsert
    - Test with batches whose items arrive children-first
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from uuid import UUID

from ..errors import NotFoundError, ValidationError
from ..store import Node, NodeKind, NodeSession, NodeStore
from .aggregation import Subtree, collect_subtree
from .models import ImportResult, NodeInput, NodeView
from .propagation import propagate_timestamp

logger = logging.getLogger(__name__)

SALES_WINDOW = timedelta(hours=24)

# Prices are stored as SQLite INTEGER (signed 64-bit).
MAX_PRICE = 2**63 - 1


def normalize_timestamp(value: datetime) -> datetime:
    """Convert to aware UTC with millisecond precision, as stored."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _check_price(item: NodeInput) -> None:
    if item.kind is NodeKind.OFFER:
        if item.price is None:
            raise ValidationError(f"Offer {item.node_id} has no price", item.node_id)
        if item.price < 1:
            raise ValidationError(f"Offer {item.node_id} has price below 1", item.node_id)
        if item.price > MAX_PRICE:
            raise ValidationError(f"Offer {item.node_id} price is out of range", item.node_id)
    elif item.price is not None:
        raise ValidationError(f"Category {item.node_id} must not have a price", item.node_id)


def _build_view(subtree: Subtree) -> NodeView:
    views = {
        node.node_id: NodeView(
            node=node,
            price=subtree.price_of(node.node_id),
            offer_count=subtree.offer_count(node.node_id),
            children=[] if node.is_category else None,
        )
        for node in subtree.nodes
    }
    for parent_id, kids in subtree.children.items():
        views[parent_id].children = [views[kid.node_id] for kid in kids]
    return views[subtree.root.node_id]


class CatalogService:
    """Mutation orchestrator for the catalog tree.

    Thread safety:
        Writes are serialized by an asyncio lock and by SQLite's write
        lock, so two imports never interleave their ancestor walks.
        Reads run in a snapshot transaction and never see half a delete.

    Example:
        >>> service = CatalogService(store)
        >>> await service.import_batch(items, update_date)
        >>> view = await service.get_by_id(category_id)
        >>> view.price
        200
    """

    def __init__(self, store: NodeStore) -> None:
        self.store = store
        self._write_lock = asyncio.Lock()

    async def import_batch(
        self,
        items: Sequence[NodeInput],
        update_date: datetime,
    ) -> ImportResult:
        """Create or update a batch of nodes.

        Items may reference parents that appear anywhere in the same batch.
        Every item gets last_modified = update_date, and each upsert
        propagates update_date to the item's ancestors.

        Args:
            items: Parsed import items
            update_date: Update time of every item in the batch

        Returns:
            ImportResult with created and updated ids

        Raises:
            ValidationError: If any item breaks an invariant; nothing is written
        """
        update_date = normalize_timestamp(update_date)
        result = ImportResult()
        if not items:
            return result

        async with self._write_lock:
            try:
                with self.store.transaction(write=True) as session:
                    existing = self._validate_batch(session, items)
                    for item in self._parents_first(session, items):
                        node = Node(
                            node_id=item.node_id,
                            name=item.name,
                            kind=item.kind,
                            price=item.price,
                            last_modified=update_date,
                            parent_id=item.parent_id,
                        )
                        session.upsert(node)
                        if item.node_id in existing:
                            result.updated.append(item.node_id)
                        else:
                            result.created.append(item.node_id)
                        propagate_timestamp(session, node, update_date)
            except ValidationError as e:
                logger.warning(
                    "Rejected import batch",
                    extra={"items": len(items), "node_id": e.details.get("node_id"), "error": e.message},
                )
                raise

        logger.info(
            "Imported batch",
            extra={
                "created_count": len(result.created),
                "updated_count": len(result.updated),
                "update_date": update_date.isoformat(),
            },
        )
        return result

    def _validate_batch(
        self,
        session: NodeSession,
        items: Sequence[NodeInput],
    ) -> dict[UUID, Node]:
        """Check every item against the batch and the stored tree.

        Returns:
            Stored nodes that the batch updates, by id
        """
        batch: dict[UUID, NodeInput] = {}
        for item in items:
            if item.node_id in batch:
                raise ValidationError(f"Duplicate id in batch: {item.node_id}", item.node_id)
            _check_price(item)
            batch[item.node_id] = item

        existing: dict[UUID, Node] = {}
        for item in items:
            stored = session.get(item.node_id)
            if stored is None:
                continue
            if stored.kind is not item.kind:
                raise ValidationError(
                    f"Cannot change {item.node_id} from {stored.kind.value} to {item.kind.value}",
                    item.node_id,
                )
            existing[item.node_id] = stored

        for item in items:
            if item.parent_id is None:
                continue
            if item.parent_id in batch:
                parent_kind = batch[item.parent_id].kind
            else:
                parent = session.get(item.parent_id)
                if parent is None:
                    raise ValidationError(
                        f"Parent {item.parent_id} of {item.node_id} not found", item.node_id
                    )
                parent_kind = parent.kind
            if parent_kind is not NodeKind.CATEGORY:
                raise ValidationError(
                    f"Parent {item.parent_id} of {item.node_id} is not a category", item.node_id
                )

        return existing

    def _parents_first(
        self,
        session: NodeSession,
        items: Sequence[NodeInput],
    ) -> list[NodeInput]:
        """Order items so that batch parents precede their batch children.

        Also rejects any item that would end up among its own ancestors.
        """
        batch = {item.node_id: item for item in items}

        def parent_of(node_id: UUID) -> UUID | None:
            if node_id in batch:
                return batch[node_id].parent_id
            stored = session.get(node_id)
            return stored.parent_id if stored else None

        depth: dict[UUID, int] = {}
        for item in items:
            seen = {item.node_id}
            batch_depth = 0
            parent_id = item.parent_id
            while parent_id is not None:
                if parent_id in seen:
                    raise ValidationError(
                        f"Node {item.node_id} would become its own ancestor", item.node_id
                    )
                seen.add(parent_id)
                if parent_id in batch:
                    batch_depth += 1
                parent_id = parent_of(parent_id)
            depth[item.node_id] = batch_depth

        return sorted(items, key=lambda item: depth[item.node_id])

    async def get_by_id(self, node_id: UUID) -> NodeView:
        """Get a node with its effective price and, for categories, its subtree.

        Raises:
            NotFoundError: If the node does not exist
        """
        with self.store.transaction() as session:
            node = session.get(node_id)
            if node is None:
                raise NotFoundError(node_id)
            subtree = collect_subtree(session, node)

        return _build_view(subtree)

    async def delete_by_id(self, node_id: UUID) -> int:
        """Delete a node and every descendant.

        Ancestor timestamps are not touched.

        Returns:
            Number of removed nodes

        Raises:
            NotFoundError: If the node does not exist
        """
        async with self._write_lock:
            with self.store.transaction(write=True) as session:
                node = session.get(node_id)
                if node is None:
                    raise NotFoundError(node_id)

                removed: list[UUID] = []
                stack = [node]
                while stack:
                    current = stack.pop()
                    removed.append(current.node_id)
                    if current.is_category:
                        stack.extend(session.children_of(current.node_id))

                for removed_id in reversed(removed):
                    session.delete(removed_id)

        logger.info("Deleted subtree", extra={"node_id": str(node_id), "removed": len(removed)})
        return len(removed)

    async def get_updated_offers(self, as_of: datetime) -> list[Node]:
        """Get offers updated in the 24 hours up to as_of, both ends inclusive."""
        as_of = normalize_timestamp(as_of)
        with self.store.transaction() as session:
            return session.offers_modified_between(as_of - SALES_WINDOW, as_of)
