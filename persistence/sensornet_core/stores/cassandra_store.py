"""
Cassandra column store implementation.

Holds the measurement projections, one table per query shape.

Invariants:
    - Every insert and select runs as a prepared statement
    - Logged batches are atomic: all statements apply or none do
    - Tables with a TTL are written USING TTL; others never expire

How to change safely:
    - Schema changes must be applied to the keyspace before deploying
    - Keep batches within the cluster's batch_size_fail_threshold
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from cassandra import DriverException
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile, NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy
from cassandra.query import BatchStatement, BatchType, dict_factory

from ..errors import StorageError
from .base import COLUMN, RowWrite, TableSpec

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (DriverException, NoHostAvailable)


def insert_cql(table: TableSpec) -> str:
    columns = ", ".join(table.columns)
    markers = ", ".join("?" for _ in table.columns)
    cql = f"INSERT INTO {table.name} ({columns}) VALUES ({markers})"
    if table.ttl_seconds:
        cql += " USING TTL ?"
    return cql


def select_cql(table: TableSpec, limited: bool) -> str:
    where = " AND ".join(f"{column} = ?" for column in table.partition_keys)
    cql = f"SELECT * FROM {table.name} WHERE {where}"
    if limited:
        cql += " LIMIT ?"
    return cql


class CassandraColumnStore:
    """cassandra-driver implementation of ColumnStore.

    Attributes:
        config: CassandraConfig instance
    """

    def __init__(self, config: Any, cluster: Any = None) -> None:
        """Initialize the store.

        Args:
            config: CassandraConfig instance
            cluster: Pre-built cluster (tests inject a mock here)
        """
        self.config = config
        self._cluster = cluster
        self._session = None
        self._prepared: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    def connect(self) -> None:
        """Connect to the cluster and bind the session to the keyspace.

        Raises:
            StorageError: If no host is reachable
        """
        if self._session is not None:
            return

        try:
            if self._cluster is None:
                auth = None
                if self.config.username:
                    auth = PlainTextAuthProvider(
                        username=self.config.username, password=self.config.password
                    )
                profile = ExecutionProfile(
                    load_balancing_policy=DCAwareRoundRobinPolicy(local_dc=self.config.local_dc),
                    row_factory=dict_factory,
                )
                self._cluster = Cluster(
                    contact_points=list(self.config.hosts),
                    port=self.config.port,
                    auth_provider=auth,
                    execution_profiles={EXEC_PROFILE_DEFAULT: profile},
                )
            self._session = self._cluster.connect(self.config.keyspace)
        except _DRIVER_ERRORS as e:
            raise StorageError(f"Failed to connect to Cassandra: {e}", COLUMN, "connect") from e

        logger.info(
            "Connected to Cassandra",
            extra={"hosts": ",".join(self.config.hosts), "keyspace": self.config.keyspace},
        )

    def close(self) -> None:
        if self._cluster is not None:
            self._cluster.shutdown()
            self._cluster = None
        self._session = None
        self._prepared.clear()
        logger.info("Cassandra cluster shut down")

    def _prepare(self, cql: str) -> Any:
        statement = self._prepared.get(cql)
        if statement is None:
            statement = self._session.prepare(cql)
            self._prepared[cql] = statement
        return statement

    def execute_batch(self, writes: Sequence[RowWrite], logged: bool = True) -> None:
        if self._session is None:
            raise StorageError("Cassandra store is not connected", COLUMN, "execute_batch")
        if not writes:
            return

        try:
            rows = [(w, w.ordered_values()) for w in writes]
        except ValueError as e:
            raise StorageError(f"Invalid batch: {e}", COLUMN, "execute_batch") from e

        batch_type = BatchType.LOGGED if logged else BatchType.UNLOGGED
        try:
            batch = BatchStatement(batch_type=batch_type)
            for write, values in rows:
                if write.table.ttl_seconds:
                    values = values + [write.table.ttl_seconds]
                batch.add(self._prepare(insert_cql(write.table)), values)
            self._session.execute(batch)
        except _DRIVER_ERRORS as e:
            raise StorageError(f"Batch write failed: {e}", COLUMN, "execute_batch") from e

        logger.debug(
            "Executed batch",
            extra={"statements": len(writes), "logged": logged},
        )

    def select(
        self,
        table: TableSpec,
        partition: dict[str, Any],
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if self._session is None:
            raise StorageError("Cassandra store is not connected", COLUMN, "select")

        values = [partition[column] for column in table.partition_keys]
        if limit is not None:
            values.append(limit)
        try:
            statement = self._prepare(select_cql(table, limit is not None))
            return list(self._session.execute(statement, values))
        except _DRIVER_ERRORS as e:
            raise StorageError(f"Select from {table.name} failed: {e}", COLUMN, "select") from e
