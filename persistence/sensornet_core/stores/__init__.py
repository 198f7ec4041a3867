"""
Store access layer for the SensorNet core.

This package provides pluggable backends for the three stores the core
keeps consistent:
- Document store (MongoDB): principal identity
- Graph store (Neo4j): roles, permissions, geography, sensor topology
- Column store (Cassandra): measurement projections
- In-memory versions of each (for testing)

Invariants:
    - Callers depend on the protocols, never on a driver
    - Driver errors surface as StorageError or DuplicateError

How to change safely:
    - New backends must implement the matching protocol
    - Keep the in-memory stores in step with production behaviour
"""

from .base import (
    COLUMN,
    DOCUMENT,
    GRAPH,
    ColumnStore,
    Direction,
    DocumentStore,
    GraphNode,
    GraphStore,
    Hop,
    NodeRef,
    PathPattern,
    RowWrite,
    Stores,
    TableSpec,
    check_identifier,
    create_stores,
)
from .memory import InMemoryColumnStore, InMemoryDocumentStore, InMemoryGraphStore

__all__ = [
    # Protocols and types
    "DocumentStore",
    "GraphStore",
    "ColumnStore",
    "NodeRef",
    "Hop",
    "Direction",
    "PathPattern",
    "GraphNode",
    "TableSpec",
    "RowWrite",
    "Stores",
    "DOCUMENT",
    "GRAPH",
    "COLUMN",
    "check_identifier",
    # Factory
    "create_stores",
    # Test implementations
    "InMemoryDocumentStore",
    "InMemoryGraphStore",
    "InMemoryColumnStore",
]
