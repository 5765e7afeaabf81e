"""
Timestamp propagation along the ancestor chain.

Whenever a node is created or updated, each of its ancestors gets the
update date as its own last_modified, unless the ancestor already carries
a later one. The walk always reaches the root: an ancestor that keeps its
timestamp does not stop the walk.

Delete never propagates; deletion time is not tracked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from ..errors import ConflictError
from ..store import Node, NodeSession

logger = logging.getLogger(__name__)


@dataclass
class PropagationResult:
    """Ancestors seen by one walk.

    Attributes:
        visited: Every ancestor, nearest first
        updated: Ancestors whose last_modified was moved forward
    """

    visited: list[UUID] = field(default_factory=list)
    updated: list[UUID] = field(default_factory=list)


def propagate_timestamp(
    session: NodeSession,
    node: Node,
    incoming: datetime,
) -> PropagationResult:
    """Move ancestors' last_modified forward to incoming.

    Args:
        session: Open write session
        node: The node that was just created or updated
        incoming: The update date of that node

    Returns:
        PropagationResult listing visited and updated ancestors

    Raises:
        ConflictError: If an ancestor vanished in the middle of the walk
    """
    result = PropagationResult()
    parent_id = node.parent_id

    while parent_id is not None:
        ancestor = session.get(parent_id)
        if ancestor is None:
            raise ConflictError(f"Ancestor {parent_id} of {node.node_id} disappeared")

        result.visited.append(ancestor.node_id)
        if incoming > ancestor.last_modified:
            session.set_last_modified(ancestor.node_id, incoming)
            result.updated.append(ancestor.node_id)
            logger.debug(
                "Propagated timestamp",
                extra={"node_id": str(ancestor.node_id), "last_modified": incoming.isoformat()},
            )

        parent_id = ancestor.parent_id

    return result
