"""
In-memory store implementations for testing.

This module provides in-memory document, graph and column stores for:
- Unit tests
- Integration tests
- Local development without running MongoDB, Neo4j or Cassandra

Invariants:
    - All data is lost on process exit
    - Same contracts as the production backends: unique email index,
      idempotent merges, all-or-nothing logged batches, clustering order
      and TTL expiry
    - Thread-safe for concurrent access

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep behaviour aligned with the protocol docstrings in base.py
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import DuplicateError, StorageError
from .base import (
    COLUMN,
    DOCUMENT,
    GRAPH,
    Direction,
    GraphNode,
    NodeRef,
    PathPattern,
    RowWrite,
    TableSpec,
)

logger = logging.getLogger(__name__)


class _FailureInjector:
    """Raises queued exceptions on the next calls of named operations."""

    def __init__(self, store: str) -> None:
        self._store = store
        self._pending: dict[str, list[Exception]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)

    def inject(self, operation: str, exception: Exception | None, times: int) -> None:
        exc = exception or StorageError(
            f"Injected {self._store} failure on {operation}", self._store, operation
        )
        self._pending[operation].extend([exc] * times)

    def check(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._pending.get(operation)
        if pending:
            raise pending.pop(0)


class _InMemoryStore:
    """Shared connection state and failure injection."""

    STORE_NAME = ""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._connected = False
        self._failures = _FailureInjector(self.STORE_NAME)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._failures.check("connect")
        self._connected = True
        logger.debug(f"{type(self).__name__} connected")

    def close(self) -> None:
        self._connected = False
        logger.debug(f"{type(self).__name__} closed")

    # Testing helpers

    def inject_failure(
        self,
        operation: str,
        exception: Exception | None = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` raise.

        Args:
            operation: Method name (e.g. "merge_node", "delete")
            exception: Exception to raise (StorageError by default)
            times: Number of consecutive calls to fail
        """
        self._failures.inject(operation, exception, times)

    def call_count(self, operation: str) -> int:
        """Number of times an operation was invoked (testing helper)."""
        return self._failures.calls[operation]


# =============================================================================
# Document store
# =============================================================================


class InMemoryDocumentStore(_InMemoryStore):
    """In-memory implementation of DocumentStore.

    Example:
        >>> docs = InMemoryDocumentStore()
        >>> docs.insert({"id": "u1", "email": "ana@x.com"})
        >>> docs.find_one("email", "ana@x.com")["id"]
        'u1'
    """

    STORE_NAME = DOCUMENT
    UNIQUE_FIELDS = ("email",)

    def __init__(self) -> None:
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}

    def insert(self, document: dict[str, Any]) -> None:
        self._failures.check("insert")
        document_id = document.get("id")
        if not document_id:
            raise StorageError("Document requires an id", DOCUMENT, "insert")

        with self._lock:
            if document_id in self._documents:
                raise DuplicateError(f"Duplicate id: {document_id}", "id", document_id)
            self._check_unique(document, exclude_id=None)
            self._documents[document_id] = copy.deepcopy(document)

    def find_by_id(self, document_id: str) -> dict[str, Any] | None:
        self._failures.check("find_by_id")
        with self._lock:
            doc = self._documents.get(document_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find_one(self, field_name: str, value: Any) -> dict[str, Any] | None:
        self._failures.check("find_one")
        with self._lock:
            for doc in self._documents.values():
                if doc.get(field_name) == value:
                    return copy.deepcopy(doc)
        return None

    def update(self, document_id: str, fields: dict[str, Any]) -> bool:
        self._failures.check("update")
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                return False
            self._check_unique(fields, exclude_id=document_id)
            doc.update(copy.deepcopy(fields))
            return True

    def delete(self, document_id: str) -> bool:
        self._failures.check("delete")
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    def _check_unique(self, fields: dict[str, Any], exclude_id: str | None) -> None:
        for name in self.UNIQUE_FIELDS:
            value = fields.get(name)
            if value is None:
                continue
            for other_id, other in self._documents.items():
                if other_id != exclude_id and other.get(name) == value:
                    raise DuplicateError(f"Duplicate {name}: {value}", name, value)

    # Testing helpers

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._documents)


# =============================================================================
# Graph store
# =============================================================================


@dataclass
class _Node:
    uid: int
    label: str
    props: dict[str, Any] = field(default_factory=dict)


class InMemoryGraphStore(_InMemoryStore):
    """In-memory implementation of GraphStore.

    Nodes are looked up by (label, key, value); edges are (type, from, to)
    triples over internal node ids. Patterns are evaluated breadth-first.
    """

    STORE_NAME = GRAPH

    def __init__(self) -> None:
        super().__init__()
        self._nodes: dict[int, _Node] = {}
        self._edges: set[tuple[str, int, int]] = set()
        self._next_uid = 0

    def _find(self, ref: NodeRef) -> _Node | None:
        for node in self._nodes.values():
            if node.label == ref.label and node.props.get(ref.key) == ref.value:
                return node
        return None

    def merge_node(self, ref: NodeRef, props: dict[str, Any]) -> GraphNode:
        self._failures.check("merge_node")
        with self._lock:
            node = self._find(ref)
            if node is None:
                node = _Node(uid=self._next_uid, label=ref.label, props={ref.key: ref.value})
                self._nodes[node.uid] = node
                self._next_uid += 1
            node.props.update(copy.deepcopy(props))
            return GraphNode(node.label, dict(node.props))

    def get_node(self, ref: NodeRef) -> GraphNode | None:
        self._failures.check("get_node")
        with self._lock:
            node = self._find(ref)
            return GraphNode(node.label, dict(node.props)) if node else None

    def delete_node(self, ref: NodeRef) -> bool:
        self._failures.check("delete_node")
        with self._lock:
            node = self._find(ref)
            if node is None:
                return False
            del self._nodes[node.uid]
            self._edges = {e for e in self._edges if node.uid not in (e[1], e[2])}
            return True

    def merge_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        self._failures.check("merge_edge")
        with self._lock:
            a, b = self._find(source), self._find(target)
            if a is None or b is None:
                return False
            self._edges.add((edge_type, a.uid, b.uid))
            return True

    def delete_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        self._failures.check("delete_edge")
        with self._lock:
            a, b = self._find(source), self._find(target)
            if a is None or b is None:
                return False
            key = (edge_type, a.uid, b.uid)
            if key not in self._edges:
                return False
            self._edges.discard(key)
            return True

    def _start(self, ref: NodeRef, start_filter: dict[str, Any] | None) -> _Node | None:
        node = self._find(ref)
        if node is None:
            return None
        for key, value in (start_filter or {}).items():
            if node.props.get(key) != value:
                return None
        return node

    def _walk(self, start: _Node, pattern: PathPattern) -> set[int]:
        frontier = {start.uid}
        for hop in pattern.hops:
            reached: set[int] = set()
            for edge_type, src, dst in self._edges:
                if edge_type not in hop.edge_types:
                    continue
                if hop.direction == Direction.OUT and src in frontier:
                    candidate = dst
                elif hop.direction == Direction.IN and dst in frontier:
                    candidate = src
                else:
                    continue
                if hop.label is None or self._nodes[candidate].label == hop.label:
                    reached.add(candidate)
            frontier = reached
            if not frontier:
                break
        return frontier

    def reachable(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        start_filter: dict[str, Any] | None = None,
    ) -> list[GraphNode]:
        self._failures.check("reachable")
        with self._lock:
            node = self._start(start, start_filter)
            if node is None:
                return []
            uids: set[int] = set()
            for pattern in patterns:
                uids |= self._walk(node, pattern)
            return [
                GraphNode(self._nodes[uid].label, dict(self._nodes[uid].props))
                for uid in sorted(uids)
            ]

    def path_exists(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        target: NodeRef,
        start_filter: dict[str, Any] | None = None,
    ) -> bool:
        self._failures.check("path_exists")
        with self._lock:
            node = self._start(start, start_filter)
            if node is None:
                return False
            for pattern in patterns:
                for uid in self._walk(node, pattern):
                    end = self._nodes[uid]
                    if end.label == target.label and end.props.get(target.key) == target.value:
                        return True
            return False

    # Testing helpers

    def edge_count(self, edge_type: str | None = None) -> int:
        with self._lock:
            return sum(1 for e in self._edges if edge_type is None or e[0] == edge_type)

    def node_count(self, label: str | None = None) -> int:
        with self._lock:
            return sum(1 for n in self._nodes.values() if label is None or n.label == label)


# =============================================================================
# Column store
# =============================================================================


def _sort_value(value: Any) -> Any:
    # Time-based UUIDs order by their embedded timestamp, like Cassandra timeuuid
    if isinstance(value, uuid.UUID):
        return (value.time if value.version == 1 else 0, value.bytes)
    return value


@dataclass
class _StoredRow:
    values: dict[str, Any]
    expires_at: float | None


class InMemoryColumnStore(_InMemoryStore):
    """In-memory implementation of ColumnStore.

    Rows live in table -> partition key -> clustering key -> row. A batch is
    validated completely before any row is applied, so a failing batch
    leaves every table untouched.

    Logged and unlogged batches are both applied atomically here; the flag
    is only recorded in `batches`.

    Attributes:
        clock: Callable returning the current time in seconds (for TTL tests)
    """

    STORE_NAME = COLUMN

    def __init__(self, clock: Any = None) -> None:
        super().__init__()
        self.clock = clock or time.time
        self._tables: dict[str, dict[tuple, dict[tuple, _StoredRow]]] = defaultdict(dict)
        self._batches: list[tuple[bool, int]] = []

    def execute_batch(self, writes: Sequence[RowWrite], logged: bool = True) -> None:
        self._failures.check("execute_batch")
        if not writes:
            return

        try:
            prepared = [(w, w.ordered_values()) for w in writes]
        except ValueError as e:
            raise StorageError(f"Invalid batch: {e}", COLUMN, "execute_batch") from e

        now = self.clock()
        with self._lock:
            for write, _ in prepared:
                table = write.table
                partition = tuple(write.values[c] for c in table.partition_keys)
                clustering = tuple(write.values[c] for c, _ in table.clustering_keys)
                expires_at = now + table.ttl_seconds if table.ttl_seconds else None
                rows = self._tables[table.name].setdefault(partition, {})
                rows[clustering] = _StoredRow(dict(write.values), expires_at)
            self._batches.append((logged, len(writes)))

    def select(
        self,
        table: TableSpec,
        partition: dict[str, Any],
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._failures.check("select")
        key = tuple(partition.get(c) for c in table.partition_keys)
        now = self.clock()
        with self._lock:
            stored = self._tables.get(table.name, {}).get(key, {})
            rows = [
                r.values
                for r in stored.values()
                if r.expires_at is None or r.expires_at > now
            ]

        # Stable sorts from the last clustering column to the first
        for column, order in reversed(table.clustering_keys):
            rows.sort(key=lambda r: _sort_value(r[column]), reverse=(order == "DESC"))

        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    # Testing helpers

    def row_count(self, table_name: str) -> int:
        with self._lock:
            return sum(len(rows) for rows in self._tables.get(table_name, {}).values())

    @property
    def batches(self) -> list[tuple[bool, int]]:
        """(logged, statement count) for each executed batch."""
        return list(self._batches)
