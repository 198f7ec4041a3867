"""
Unit tests for MongoDocumentStore against a mocked pymongo client.

Tests cover:
- id <-> _id mapping
- Error translation
- Index creation
"""

from unittest.mock import MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError, ServerSelectionTimeoutError

from persistence.sensornet_core.config import MongoConfig
from persistence.sensornet_core.errors import DuplicateError, StorageError
from persistence.sensornet_core.stores.mongo_store import EMAIL_INDEX, MongoDocumentStore


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def client(collection):
    client = MagicMock()
    client.__getitem__.return_value.__getitem__.return_value = collection
    return client


@pytest.fixture
def store(client):
    store = MongoDocumentStore(MongoConfig(), client=client)
    store.connect()
    return store


class TestMongoDocumentStore:
    def test_connect_pings(self, store, client):
        client.admin.command.assert_called_once_with("ping")
        client.__getitem__.assert_called_with("sensornet")
        assert store.is_connected

    def test_connect_failure(self, client):
        client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")
        store = MongoDocumentStore(MongoConfig(), client=client)

        with pytest.raises(StorageError) as exc_info:
            store.connect()

        assert exc_info.value.store == "document"
        assert not store.is_connected

    def test_requires_connection(self, client):
        with pytest.raises(StorageError):
            MongoDocumentStore(MongoConfig(), client=client).find_by_id("u1")

    def test_insert_maps_id(self, store, collection):
        store.insert({"id": "u1", "email": "ana@x.com"})
        collection.insert_one.assert_called_once_with({"_id": "u1", "email": "ana@x.com"})

    def test_find_maps_id_back(self, store, collection):
        collection.find_one.return_value = {"_id": "u1", "email": "ana@x.com"}

        assert store.find_by_id("u1") == {"id": "u1", "email": "ana@x.com"}
        collection.find_one.assert_called_once_with({"_id": "u1"})

    def test_find_one_by_id_field(self, store, collection):
        collection.find_one.return_value = None

        assert store.find_one("id", "u1") is None
        collection.find_one.assert_called_once_with({"_id": "u1"})

    def test_duplicate_email(self, store, collection):
        collection.insert_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key", 11000, {"keyPattern": {"email": 1}}
        )

        with pytest.raises(DuplicateError) as exc_info:
            store.insert({"id": "u1", "email": "ana@x.com"})

        assert exc_info.value.field_name == "email"
        assert exc_info.value.value == "ana@x.com"

    def test_duplicate_on_update(self, store, collection):
        collection.update_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key", 11000, {"keyPattern": {"email": 1}}
        )
        with pytest.raises(DuplicateError):
            store.update("u1", {"email": "bob@x.com"})

    def test_driver_error_translated(self, store, collection):
        collection.find_one.side_effect = PyMongoError("boom")

        with pytest.raises(StorageError) as exc_info:
            store.find_by_id("u1")

        assert exc_info.value.operation == "find_by_id"

    def test_update_matched(self, store, collection):
        collection.update_one.return_value.matched_count = 1
        assert store.update("u1", {"name": "Ana"}) is True
        collection.update_one.assert_called_once_with({"_id": "u1"}, {"$set": {"name": "Ana"}})

        collection.update_one.return_value.matched_count = 0
        assert store.update("u2", {"name": "Ana"}) is False

    def test_delete(self, store, collection):
        collection.delete_one.return_value.deleted_count = 1
        assert store.delete("u1") is True

        collection.delete_one.return_value.deleted_count = 0
        assert store.delete("u1") is False

    def test_ensure_indexes(self, store, collection):
        store.ensure_indexes()
        collection.create_index.assert_called_once_with([("email", 1)], unique=True, name=EMAIL_INDEX)

    def test_close(self, store, client):
        store.close()
        client.close.assert_called_once()
        assert not store.is_connected
