"""
Base protocols and types for the three backing stores.

This module defines the DocumentStore, GraphStore and ColumnStore protocols
that all backends must implement, along with the value types they exchange:
graph node references, traversal patterns, column table specs and row writes.

Invariants:
    - Protocols speak in plain dicts and dataclasses, never driver types
    - Every backend translates its driver errors into StorageError
      (DuplicateError for unique-key violations)
    - Label, relationship, table and column names are identifiers only;
      values always travel as parameters

How to change safely:
    - Protocol changes require updating every implementation, including
      the in-memory ones used by tests
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

import logging
import re
from abc import abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import CoreConfig

logger = logging.getLogger(__name__)

DOCUMENT = "document"
GRAPH = "graph"
COLUMN = "column"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name: str) -> str:
    """Return name if it is a safe identifier, else raise ValueError."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


# =============================================================================
# Graph types
# =============================================================================


class Direction(Enum):
    """Direction of a traversal hop relative to the current node."""

    OUT = "out"
    IN = "in"


@dataclass(frozen=True)
class NodeRef:
    """Reference to a graph node by a unique key.

    Attributes:
        label: Node label (Principal, Role, City, ...)
        value: Key value
        key: Unique property used for lookup ("id" or "name")
    """

    label: str
    value: str
    key: str = "id"

    def __post_init__(self) -> None:
        check_identifier(self.label)
        check_identifier(self.key)


@dataclass(frozen=True)
class Hop:
    """One step of a traversal.

    Attributes:
        edge_types: Relationship types accepted for this step
        label: Label required on the node reached (None accepts any)
        direction: Follow edges outgoing from or incoming to the current node
    """

    edge_types: tuple[str, ...]
    label: str | None = None
    direction: Direction = Direction.OUT

    def __post_init__(self) -> None:
        if not self.edge_types:
            raise ValueError("Hop requires at least one edge type")
        for edge_type in self.edge_types:
            check_identifier(edge_type)
        if self.label is not None:
            check_identifier(self.label)


@dataclass(frozen=True)
class PathPattern:
    """A fixed-length chain of hops from a start node."""

    hops: tuple[Hop, ...]

    def __post_init__(self) -> None:
        if not self.hops:
            raise ValueError("PathPattern requires at least one hop")

    @property
    def target_label(self) -> str | None:
        return self.hops[-1].label


@dataclass
class GraphNode:
    """A node returned by the graph store."""

    label: str
    props: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.props.get(key, default)


# =============================================================================
# Column types
# =============================================================================


@dataclass(frozen=True)
class TableSpec:
    """Description of a column-store table.

    Attributes:
        name: Table name
        partition_keys: Partition key columns, in order
        clustering_keys: (column, "ASC"|"DESC") pairs, in order
        columns: All columns written, including keys
        ttl_seconds: TTL applied on insert (None or 0 for no TTL)
    """

    name: str
    partition_keys: tuple[str, ...]
    clustering_keys: tuple[tuple[str, str], ...]
    columns: tuple[str, ...]
    ttl_seconds: int | None = None

    def __post_init__(self) -> None:
        check_identifier(self.name)
        for column in self.columns:
            check_identifier(column)
        for column in self.partition_keys:
            if column not in self.columns:
                raise ValueError(f"Partition key {column} not in columns of {self.name}")
        for column, order in self.clustering_keys:
            if column not in self.columns:
                raise ValueError(f"Clustering key {column} not in columns of {self.name}")
            if order not in ("ASC", "DESC"):
                raise ValueError(f"Invalid clustering order {order} for {self.name}.{column}")

    @property
    def primary_key(self) -> tuple[str, ...]:
        return self.partition_keys + tuple(c for c, _ in self.clustering_keys)


@dataclass(frozen=True)
class RowWrite:
    """One insert into a table as part of a batch."""

    table: TableSpec
    values: dict[str, Any]

    def ordered_values(self) -> list[Any]:
        """Values in the table's column order.

        Raises:
            ValueError: If a primary key column is missing or None
        """
        for column in self.table.primary_key:
            if self.values.get(column) is None:
                raise ValueError(f"Missing key column {column} for {self.table.name}")
        unknown = set(self.values) - set(self.table.columns)
        if unknown:
            raise ValueError(f"Unknown columns for {self.table.name}: {sorted(unknown)}")
        return [self.values.get(column) for column in self.table.columns]


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for the principal document store.

    Documents are plain dicts keyed by "id". Backends map "id" onto their
    native primary key.

    Uniqueness contract:
        - "id" is unique
        - "email" is unique (exact match); insert() and update() raise
          DuplicateError on violation
    """

    @abstractmethod
    def connect(self) -> None:
        """Open the connection and verify the server is reachable."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the connection pool."""
        ...

    @abstractmethod
    def insert(self, document: dict[str, Any]) -> None:
        """Insert a new document.

        Raises:
            DuplicateError: If id or email already exists
            StorageError: For other failures
        """
        ...

    @abstractmethod
    def find_by_id(self, document_id: str) -> dict[str, Any] | None:
        """Get a document by id, or None."""
        ...

    @abstractmethod
    def find_one(self, field_name: str, value: Any) -> dict[str, Any] | None:
        """Get the first document whose field equals value, or None."""
        ...

    @abstractmethod
    def update(self, document_id: str, fields: dict[str, Any]) -> bool:
        """Set fields on a document.

        Returns:
            True if a document matched

        Raises:
            DuplicateError: If the update violates email uniqueness
        """
        ...

    @abstractmethod
    def delete(self, document_id: str) -> bool:
        """Delete a document. Returns True if one was deleted."""
        ...


@runtime_checkable
class GraphStore(Protocol):
    """Protocol for the authorization graph store.

    Reads are pattern-based: callers describe fixed-length paths with
    PathPattern and the backend evaluates all patterns in one round trip.
    """

    @abstractmethod
    def connect(self) -> None:
        """Open the driver and verify connectivity."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the driver."""
        ...

    @abstractmethod
    def merge_node(self, ref: NodeRef, props: dict[str, Any]) -> GraphNode:
        """Create the node if absent, then set props. Idempotent."""
        ...

    @abstractmethod
    def get_node(self, ref: NodeRef) -> GraphNode | None:
        """Get a node by its unique key, or None."""
        ...

    @abstractmethod
    def delete_node(self, ref: NodeRef) -> bool:
        """Delete a node and its edges. Returns True if one was deleted."""
        ...

    @abstractmethod
    def merge_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        """Create an edge if absent. Returns False if an endpoint is missing."""
        ...

    @abstractmethod
    def delete_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        """Delete an edge. Returns True if one was deleted."""
        ...

    @abstractmethod
    def reachable(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        start_filter: dict[str, Any] | None = None,
    ) -> list[GraphNode]:
        """Distinct end nodes of any pattern from start.

        Args:
            start: Start node
            patterns: Alternative paths; results are unioned
            start_filter: Property equalities the start node must satisfy

        Returns:
            End nodes (empty if start is missing or filtered out)
        """
        ...

    @abstractmethod
    def path_exists(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        target: NodeRef,
        start_filter: dict[str, Any] | None = None,
    ) -> bool:
        """Whether any pattern leads from start to target."""
        ...


@runtime_checkable
class ColumnStore(Protocol):
    """Protocol for the column / time-series store.

    Atomicity contract:
        - execute_batch(logged=True) applies every write or none
        - A row with an existing primary key is overwritten
    """

    @abstractmethod
    def connect(self) -> None:
        """Open the cluster session."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Shut down the cluster session."""
        ...

    @abstractmethod
    def execute_batch(self, writes: Sequence[RowWrite], logged: bool = True) -> None:
        """Execute writes as one batch.

        Raises:
            StorageError: If the batch fails (nothing was applied when logged)
        """
        ...

    @abstractmethod
    def select(
        self,
        table: TableSpec,
        partition: dict[str, Any],
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Rows of one partition in clustering order."""
        ...


@dataclass
class Stores:
    """The three store clients, injected together."""

    documents: DocumentStore
    graph: GraphStore
    columns: ColumnStore

    def connect(self) -> None:
        self.documents.connect()
        self.graph.connect()
        self.columns.connect()

    def close(self) -> None:
        # Close all three even if one fails
        errors: list[Exception] = []
        for store in (self.columns, self.graph, self.documents):
            try:
                store.close()
            except Exception as e:
                logger.error(f"Error closing {type(store).__name__}: {e}", exc_info=True)
                errors.append(e)
        if errors:
            raise errors[0]


def create_stores(config: "CoreConfig") -> Stores:
    """Factory function to create store clients from configuration.

    Args:
        config: Core configuration

    Returns:
        Stores bundle for the configured backend

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend

    if config.store_backend == StoreBackend.LIVE:
        from .cassandra_store import CassandraColumnStore
        from .mongo_store import MongoDocumentStore
        from .neo4j_store import Neo4jGraphStore

        return Stores(
            documents=MongoDocumentStore(config.mongo),
            graph=Neo4jGraphStore(config.neo4j),
            columns=CassandraColumnStore(config.cassandra),
        )
    elif config.store_backend == StoreBackend.MEMORY:
        from .memory import InMemoryColumnStore, InMemoryDocumentStore, InMemoryGraphStore

        return Stores(
            documents=InMemoryDocumentStore(),
            graph=InMemoryGraphStore(),
            columns=InMemoryColumnStore(),
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
