"""
Unit tests for CassandraColumnStore against a mocked cluster.

Tests cover:
- CQL generated per table
- Logged batches with TTL binding
- Prepared statement reuse
- Error translation
"""

import uuid
from datetime import date
from unittest.mock import MagicMock

import pytest
from cassandra import OperationTimedOut
from cassandra.cluster import NoHostAvailable
from cassandra.query import BatchType

from persistence.sensornet_core.config import CassandraConfig
from persistence.sensornet_core.errors import StorageError
from persistence.sensornet_core.ingest.projections import measurement_tables
from persistence.sensornet_core.stores import cassandra_store
from persistence.sensornet_core.stores.base import RowWrite
from persistence.sensornet_core.stores.cassandra_store import (
    CassandraColumnStore,
    insert_cql,
    select_cql,
)


@pytest.fixture
def tables():
    return measurement_tables(3600)


@pytest.fixture
def session():
    session = MagicMock()
    session.prepare.side_effect = lambda cql: f"prepared:{cql}"
    return session


@pytest.fixture
def cluster(session):
    cluster = MagicMock()
    cluster.connect.return_value = session
    return cluster


@pytest.fixture
def store(cluster):
    store = CassandraColumnStore(CassandraConfig(keyspace="sn"), cluster=cluster)
    store.connect()
    return store


@pytest.fixture
def batch_cls(monkeypatch):
    batch_cls = MagicMock()
    monkeypatch.setattr(cassandra_store, "BatchStatement", batch_cls)
    return batch_cls


def latest_row(tables, sensor_id="S1"):
    return RowWrite(
        tables.latest,
        {
            "sensor_id": sensor_id,
            "ts": uuid.uuid1(),
            "temperature": 20.0,
            "humidity": None,
            "type": "temperature",
            "city": "Rosario",
            "country": "Argentina",
        },
    )


class TestCql:
    def test_insert_with_ttl(self, tables):
        assert insert_cql(tables.by_sensor) == (
            "INSERT INTO measurements_by_sensor_day "
            "(sensor_id, day, ts, temperature, humidity, type, city, country) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) USING TTL ?"
        )

    def test_insert_without_ttl(self, tables):
        assert "USING TTL" not in insert_cql(tables.latest)

    def test_select(self, tables):
        assert select_cql(tables.by_city, limited=True) == (
            "SELECT * FROM measurements_by_city_day WHERE city = ? AND day = ? LIMIT ?"
        )
        assert select_cql(tables.latest, limited=False) == (
            "SELECT * FROM last_measurement_by_sensor WHERE sensor_id = ?"
        )


class TestCassandraColumnStore:
    def test_connect_uses_keyspace(self, store, cluster):
        cluster.connect.assert_called_once_with("sn")
        assert store.is_connected

    def test_connect_failure(self, cluster):
        cluster.connect.side_effect = NoHostAvailable("no hosts", {})

        with pytest.raises(StorageError) as exc_info:
            CassandraColumnStore(CassandraConfig(), cluster=cluster).connect()

        assert exc_info.value.store == "column"

    def test_logged_batch_binds_ttl(self, store, session, tables, batch_cls):
        ts = uuid.uuid1()
        history = RowWrite(
            tables.by_sensor,
            {
                "sensor_id": "S1",
                "day": date(2024, 6, 1),
                "ts": ts,
                "temperature": 20.0,
                "humidity": None,
                "type": "temperature",
                "city": "Rosario",
                "country": "Argentina",
            },
        )

        store.execute_batch([history, latest_row(tables)])

        batch_cls.assert_called_once_with(batch_type=BatchType.LOGGED)
        batch = batch_cls.return_value
        first, second = batch.add.call_args_list
        assert first.args[0] == f"prepared:{insert_cql(tables.by_sensor)}"
        assert first.args[1][-1] == 3600
        assert first.args[1][2] == ts
        assert len(second.args[1]) == len(tables.latest.columns)
        session.execute.assert_called_once_with(batch)

    def test_unlogged_batch(self, store, tables, batch_cls):
        store.execute_batch([latest_row(tables)], logged=False)
        batch_cls.assert_called_once_with(batch_type=BatchType.UNLOGGED)

    def test_statements_prepared_once(self, store, session, tables, batch_cls):
        store.execute_batch([latest_row(tables, "S1")])
        store.execute_batch([latest_row(tables, "S2")])

        assert session.prepare.call_count == 1

    def test_invalid_row_rejected_before_execution(self, store, session, tables, batch_cls):
        bad = RowWrite(tables.latest, {"sensor_id": None, "ts": uuid.uuid1()})

        with pytest.raises(StorageError):
            store.execute_batch([latest_row(tables), bad])

        session.execute.assert_not_called()

    def test_batch_failure_translated(self, store, session, tables, batch_cls):
        session.execute.side_effect = OperationTimedOut("timeout")

        with pytest.raises(StorageError) as exc_info:
            store.execute_batch([latest_row(tables)])

        assert exc_info.value.operation == "execute_batch"

    def test_select_with_limit(self, store, session, tables):
        session.execute.return_value = [{"sensor_id": "S1"}]

        rows = store.select(tables.by_sensor, {"sensor_id": "S1", "day": date(2024, 6, 1)}, limit=5)

        statement, values = session.execute.call_args.args
        assert statement == f"prepared:{select_cql(tables.by_sensor, True)}"
        assert values == ["S1", date(2024, 6, 1), 5]
        assert rows == [{"sensor_id": "S1"}]

    def test_requires_connection(self, tables):
        with pytest.raises(StorageError):
            CassandraColumnStore(CassandraConfig()).select(tables.latest, {"sensor_id": "S1"})

    def test_close(self, store, cluster):
        store.close()
        cluster.shutdown.assert_called_once()
        assert not store.is_connected
