"""
Catalog SQLite store for Megamarket.

This module manages the SQLite database that stores catalog nodes:
- Offers with their fixed prices
- Categories (price is never stored, always derived)
- The by-parent index used for aggregation and cascading delete

Nodes reference their parent by id only. The store owns the tree; a node
never holds a reference to another node object.

Invariants:
    - One row per node id
    - Category rows always have a NULL price
    - Timestamps are stored as Unix ms in UTC
    - Every multi-statement operation runs inside transaction()

How to change safely:
    - Schema migrations must be backward compatible
    - Keep idx_nodes_parent, both aggregation and delete walk it
    - Use transactions for all write operations

Table schema:
    nodes:
        - node_id TEXT (UUID) PRIMARY KEY
        - name TEXT
        - kind TEXT ('OFFER' | 'CATEGORY')
        - price INTEGER (NULL for categories)
        - last_modified INTEGER (Unix ms)
        - parent_id TEXT (UUID, nullable)
        - INDEX on (parent_id)
        - INDEX on (kind, last_modified)
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from uuid import UUID

from ..errors import ConflictError

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Kind of a catalog node."""

    OFFER = "OFFER"
    CATEGORY = "CATEGORY"


@dataclass
class Node:
    """Represents a node in the catalog tree.

    Attributes:
        node_id: Unique node identifier (UUID)
        name: Display name
        kind: Offer or category, immutable after creation
        price: Fixed price for offers, None for categories
        last_modified: Last update of the node or, for categories, of its subtree
        parent_id: Id of the parent category, None for roots
    """

    node_id: UUID
    name: str
    kind: NodeKind
    price: int | None
    last_modified: datetime
    parent_id: UUID | None = None

    @property
    def is_category(self) -> bool:
        return self.kind is NodeKind.CATEGORY


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_unix_ms(value: datetime) -> int:
    """Convert a datetime to Unix milliseconds.

    Naive datetimes are taken to be UTC. Sub-millisecond precision is dropped.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_unix_ms(value: int) -> datetime:
    """Convert Unix milliseconds to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=value)


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        node_id=UUID(row["node_id"]),
        name=row["name"],
        kind=NodeKind(row["kind"]),
        price=row["price"],
        last_modified=from_unix_ms(row["last_modified"]),
        parent_id=UUID(row["parent_id"]) if row["parent_id"] else None,
    )


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class NodeSession:
    """Node operations bound to one open transaction.

    Sessions are handed out by NodeStore.transaction() and must not be used
    after the with-block exits.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, node_id: UUID) -> Node | None:
        """Get a node by ID.

        Args:
            node_id: Node identifier

        Returns:
            Node or None if not found
        """
        cursor = self._conn.execute(
            "SELECT * FROM nodes WHERE node_id = ?",
            (str(node_id),),
        )
        row = cursor.fetchone()
        return _row_to_node(row) if row else None

    def upsert(self, node: Node) -> None:
        """Insert a node or overwrite every column of an existing one."""
        self._conn.execute(
            """
            INSERT INTO nodes (node_id, name, kind, price, last_modified, parent_id)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(node_id) DO UPDATE SET
                name = excluded.name,
                kind = excluded.kind,
                price = excluded.price,
                last_modified = excluded.last_modified,
                parent_id = excluded.parent_id
            """,
            (
                str(node.node_id),
                node.name,
                node.kind.value,
                node.price,
                to_unix_ms(node.last_modified),
                str(node.parent_id) if node.parent_id else None,
            ),
        )

    def set_last_modified(self, node_id: UUID, last_modified: datetime) -> None:
        self._conn.execute(
            "UPDATE nodes SET last_modified = ? WHERE node_id = ?",
            (to_unix_ms(last_modified), str(node_id)),
        )

    def delete(self, node_id: UUID) -> bool:
        """Delete a single node row.

        Children are not touched; cascading is the caller's job.

        Returns:
            True if deleted, False if not found
        """
        cursor = self._conn.execute(
            "DELETE FROM nodes WHERE node_id = ?",
            (str(node_id),),
        )
        return cursor.rowcount > 0

    def children_of(self, parent_id: UUID) -> list[Node]:
        """Get the direct children of a node through the by-parent index."""
        cursor = self._conn.execute(
            "SELECT * FROM nodes WHERE parent_id = ? ORDER BY name, node_id",
            (str(parent_id),),
        )
        return [_row_to_node(row) for row in cursor.fetchall()]

    def offers_modified_between(self, start: datetime, end: datetime) -> list[Node]:
        """Get offers with start <= last_modified <= end.

        Args:
            start: Inclusive lower bound
            end: Inclusive upper bound

        Returns:
            Offers ordered by last_modified
        """
        cursor = self._conn.execute(
            """
            SELECT * FROM nodes
            WHERE kind = ? AND last_modified BETWEEN ? AND ?
            ORDER BY last_modified, node_id
            """,
            (NodeKind.OFFER.value, to_unix_ms(start), to_unix_ms(end)),
        )
        return [_row_to_node(row) for row in cursor.fetchall()]

    def count(self) -> int:
        cursor = self._conn.execute("SELECT COUNT(*) FROM nodes")
        return cursor.fetchone()[0]


class NodeStore:
    """SQLite store for catalog nodes.

    Thread safety:
        Each transaction opens its own connection.
        SQLite handles concurrent readers via WAL mode; writers are
        serialized with BEGIN IMMEDIATE.

    Example:
        >>> store = NodeStore("/var/lib/megamarket/catalog.db")
        >>> store.initialize()
        >>> with store.transaction(write=True) as session:
        ...     session.upsert(node)
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the node store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the catalog database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS nodes (
                node_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('OFFER', 'CATEGORY')),
                price INTEGER,
                last_modified INTEGER NOT NULL,
                parent_id TEXT
            );

            -- By-parent index
            CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id);
            CREATE INDEX IF NOT EXISTS idx_nodes_kind_modified ON nodes(kind, last_modified);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info("Initialized catalog database", extra={"db_path": str(self.db_path)})

    @contextmanager
    def transaction(self, write: bool = False) -> Iterator[NodeSession]:
        """Run a block of node operations in one SQLite transaction.

        Write transactions take the database write lock up front so two
        writers never interleave their reads and writes of the same rows.
        Read transactions see one consistent snapshot for the whole block.

        Args:
            write: Take the write lock immediately

        Yields:
            NodeSession bound to the transaction

        Raises:
            ConflictError: If the write lock could not be acquired
        """
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN DEFERRED")
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    raise ConflictError(f"Catalog is locked by another writer: {e}") from e
                raise

            try:
                yield NodeSession(conn)
            except Exception:
                conn.execute("ROLLBACK")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                if _is_lock_error(e):
                    raise ConflictError(f"Could not commit catalog transaction: {e}") from e
                raise
