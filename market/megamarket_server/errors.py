"""
Error types for the Megamarket catalog core.

This module defines every exception the core raises to the boundary layer:
- CatalogError: Base exception
- NotFoundError: Requested node does not exist
- ValidationError: Batch violates a tree or node invariant
- ConflictError: Store could not serialize a write

Invariants:
    - All errors inherit from CatalogError
    - Errors carry a stable code for programmatic handling
    - The core never retries; callers decide what to do
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class CatalogError(Exception):
    """Base exception for all catalog errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CATALOG_ERROR"
        self.details = details or {}


class NotFoundError(CatalogError):
    """Node not found.

    Raised when:
    - get_by_id is called with an unknown id
    - delete_by_id is called with an unknown id
    """

    def __init__(self, node_id: UUID) -> None:
        super().__init__(
            f"Node not found: {node_id}",
            code="NOT_FOUND",
            details={"node_id": str(node_id)},
        )
        self.node_id = node_id


class ValidationError(CatalogError):
    """Imported batch is invalid.

    Raised when:
    - Parent id does not resolve or resolves to an offer
    - Price is missing for an offer or present for a category
    - An existing node would change its kind
    - A node would become its own ancestor
    - The same id appears twice in one batch
    """

    def __init__(self, message: str, node_id: UUID | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"node_id": str(node_id) if node_id else None},
        )
        self.node_id = node_id


class ConflictError(CatalogError):
    """Concurrent modification detected.

    Raised when:
    - SQLite write lock could not be acquired within the busy timeout
    - An ancestor disappeared in the middle of a propagation walk
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFLICT")
