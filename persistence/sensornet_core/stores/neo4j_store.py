"""
Neo4j graph store implementation.

Holds the authorization graph: principal mirrors, roles, groups,
permissions, geography and sensor topology.

Invariants:
    - Labels, relationship types and property keys are validated
      identifiers before they reach Cypher; values are always parameters
    - Reads run in read transactions, writes in write transactions
    - All traversal patterns of a call are evaluated in one query

How to change safely:
    - Keep _segment() and the in-memory _walk() semantically identical
    - Profile new traversals against a realistic graph before deploying
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from neo4j import GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from ..errors import StorageError
from .base import GRAPH, Direction, GraphNode, Hop, NodeRef, PathPattern, check_identifier

logger = logging.getLogger(__name__)


def _node(ref: NodeRef, var: str, param: str) -> str:
    return f"({var}:{ref.label} {{{ref.key}: ${param}}})"


def _segment(hop: Hop, node: str) -> str:
    rel = "|".join(hop.edge_types)
    if hop.direction == Direction.IN:
        return f"<-[:{rel}]-{node}"
    return f"-[:{rel}]->{node}"


def _pattern(pattern: PathPattern, end: str) -> str:
    """Render a PathPattern from (s); the last node is replaced by end."""
    parts = ["(s)"]
    for i, hop in enumerate(pattern.hops):
        if i == len(pattern.hops) - 1:
            node = end
        else:
            node = f"(:{hop.label})" if hop.label else "()"
        parts.append(_segment(hop, node))
    return "".join(parts)


def _start_clause(
    start: NodeRef, start_filter: dict[str, Any] | None, params: dict[str, Any]
) -> str:
    clause = f"MATCH {_node(start, 's', 'start_value')}"
    params["start_value"] = start.value
    conditions = []
    for key, value in (start_filter or {}).items():
        check_identifier(key)
        params[f"f_{key}"] = value
        conditions.append(f"s.{key} = $f_{key}")
    if conditions:
        clause += " WHERE " + " AND ".join(conditions)
    return clause


class Neo4jGraphStore:
    """neo4j driver implementation of GraphStore.

    Example:
        >>> store = Neo4jGraphStore(Neo4jConfig(uri="bolt://localhost:7687"))
        >>> store.connect()
        >>> store.merge_node(NodeRef("City", "Rosario", key="name"), {})
    """

    def __init__(self, config: Any, driver: Any = None) -> None:
        """Initialize the store.

        Args:
            config: Neo4jConfig instance
            driver: Pre-built driver (tests inject a mock here)
        """
        self.config = config
        self._driver = driver
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Create the driver and verify connectivity.

        Raises:
            StorageError: If the server is unreachable
        """
        if self._connected:
            return

        try:
            if self._driver is None:
                self._driver = GraphDatabase.driver(
                    self.config.uri, auth=(self.config.user, self.config.password)
                )
            self._driver.verify_connectivity()
        except (Neo4jError, DriverError) as e:
            raise StorageError(f"Failed to connect to Neo4j: {e}", GRAPH, "connect") from e

        self._connected = True
        logger.info("Connected to Neo4j", extra={"uri": self.config.uri})

    def close(self) -> None:
        if self._driver is not None:
            self._driver.close()
            self._driver = None
        self._connected = False
        logger.info("Neo4j driver closed")

    def _run(self, operation: str, query: str, params: dict[str, Any], write: bool) -> list[dict]:
        if self._driver is None:
            raise StorageError("Neo4j store is not connected", GRAPH, operation)

        def work(tx):
            return [record.data() for record in tx.run(query, params)]

        try:
            with self._driver.session(database=self.config.database) as session:
                if write:
                    return session.execute_write(work)
                return session.execute_read(work)
        except (Neo4jError, DriverError) as e:
            raise StorageError(f"Graph {operation} failed: {e}", GRAPH, operation) from e

    def merge_node(self, ref: NodeRef, props: dict[str, Any]) -> GraphNode:
        for key in props:
            check_identifier(key)
        query = f"MERGE {_node(ref, 'n', 'value')} SET n += $props RETURN properties(n) AS props"
        rows = self._run("merge_node", query, {"value": ref.value, "props": props}, write=True)
        return GraphNode(ref.label, rows[0]["props"])

    def get_node(self, ref: NodeRef) -> GraphNode | None:
        query = f"MATCH {_node(ref, 'n', 'value')} RETURN properties(n) AS props LIMIT 1"
        rows = self._run("get_node", query, {"value": ref.value}, write=False)
        return GraphNode(ref.label, rows[0]["props"]) if rows else None

    def delete_node(self, ref: NodeRef) -> bool:
        query = f"MATCH {_node(ref, 'n', 'value')} DETACH DELETE n RETURN count(*) AS deleted"
        rows = self._run("delete_node", query, {"value": ref.value}, write=True)
        return bool(rows and rows[0]["deleted"])

    def merge_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        check_identifier(edge_type)
        query = (
            f"MATCH {_node(source, 'a', 'source')}, {_node(target, 'b', 'target')} "
            f"MERGE (a)-[:{edge_type}]->(b) RETURN count(*) AS merged"
        )
        params = {"source": source.value, "target": target.value}
        rows = self._run("merge_edge", query, params, write=True)
        return bool(rows and rows[0]["merged"])

    def delete_edge(self, edge_type: str, source: NodeRef, target: NodeRef) -> bool:
        check_identifier(edge_type)
        query = (
            f"MATCH {_node(source, 'a', 'source')}-[r:{edge_type}]->{_node(target, 'b', 'target')} "
            f"DELETE r RETURN count(*) AS deleted"
        )
        params = {"source": source.value, "target": target.value}
        rows = self._run("delete_edge", query, params, write=True)
        return bool(rows and rows[0]["deleted"])

    def reachable(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        start_filter: dict[str, Any] | None = None,
    ) -> list[GraphNode]:
        if not patterns:
            return []
        params: dict[str, Any] = {}
        branches = []
        for pattern in patterns:
            label = pattern.target_label
            end = f"(t:{label})" if label else "(t)"
            branches.append(f"WITH s MATCH {_pattern(pattern, end)} RETURN t")
        query = (
            f"{_start_clause(start, start_filter, params)} "
            f"CALL {{ {' UNION '.join(branches)} }} "
            f"RETURN DISTINCT labels(t)[0] AS label, properties(t) AS props"
        )
        rows = self._run("reachable", query, params, write=False)
        return [GraphNode(row["label"], row["props"]) for row in rows]

    def path_exists(
        self,
        start: NodeRef,
        patterns: Sequence[PathPattern],
        target: NodeRef,
        start_filter: dict[str, Any] | None = None,
    ) -> bool:
        params: dict[str, Any] = {"target_value": target.value}
        checks = []
        for pattern in patterns:
            label = pattern.target_label
            if label is not None and label != target.label:
                continue
            end = _node(target, "t", "target_value")
            checks.append(f"EXISTS {{ MATCH {_pattern(pattern, end)} }}")
        if not checks:
            return False
        query = (
            f"{_start_clause(start, start_filter, params)} "
            f"RETURN {' OR '.join(checks)} AS found LIMIT 1"
        )
        rows = self._run("path_exists", query, params, write=False)
        return bool(rows and rows[0]["found"])
