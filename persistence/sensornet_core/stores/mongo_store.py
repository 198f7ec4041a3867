"""
MongoDB document store implementation.

Holds the principal records, the source of truth for identity.

Invariants:
    - Documents are exposed with "id"; stored with "_id"
    - A unique index on email backs the duplicate check
    - pymongo exceptions never leave this module untranslated

How to change safely:
    - Index changes must stay compatible with existing collections
      (ensure_indexes() runs on every startup)
    - Test with a real MongoDB before deploying
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import DuplicateError, StorageError
from .base import DOCUMENT

logger = logging.getLogger(__name__)

EMAIL_INDEX = "idx_principals_email"


def _to_mongo(document: dict[str, Any]) -> dict[str, Any]:
    doc = dict(document)
    doc["_id"] = doc.pop("id")
    return doc


def _from_mongo(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    if doc is None:
        return None
    result = dict(doc)
    result["id"] = result.pop("_id")
    return result


class MongoDocumentStore:
    """pymongo implementation of DocumentStore.

    Example:
        >>> store = MongoDocumentStore(MongoConfig(uri="mongodb://localhost:27017"))
        >>> store.connect()
        >>> store.find_one("email", "ana@example.com")
    """

    def __init__(self, config: Any, client: MongoClient | None = None) -> None:
        """Initialize the store.

        Args:
            config: MongoConfig instance
            client: Pre-built client (tests inject a mock here)
        """
        self.config = config
        self._client = client
        self._collection = None

    @property
    def is_connected(self) -> bool:
        return self._collection is not None

    def connect(self) -> None:
        """Create the client and ping the server.

        Raises:
            StorageError: If the server is unreachable
        """
        if self._collection is not None:
            return

        try:
            if self._client is None:
                self._client = MongoClient(
                    self.config.uri,
                    serverSelectionTimeoutMS=self.config.timeout_ms,
                    tz_aware=True,
                )
            self._client.admin.command("ping")
            self._collection = self._client[self.config.database][self.config.collection]
        except PyMongoError as e:
            raise StorageError(f"Failed to connect to MongoDB: {e}", DOCUMENT, "connect") from e

        logger.info(
            "Connected to MongoDB",
            extra={"database": self.config.database, "collection": self.config.collection},
        )

    def ensure_indexes(self) -> None:
        """Create the unique email index if it does not exist."""
        try:
            self._require().create_index(
                [("email", ASCENDING)], unique=True, name=EMAIL_INDEX
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to create indexes: {e}", DOCUMENT, "ensure_indexes") from e

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self._collection = None
        logger.info("MongoDB connection closed")

    def _require(self):
        if self._collection is None:
            raise StorageError("MongoDB store is not connected", DOCUMENT)
        return self._collection

    def insert(self, document: dict[str, Any]) -> None:
        collection = self._require()
        try:
            collection.insert_one(_to_mongo(document))
        except DuplicateKeyError as e:
            raise self._duplicate(e, document) from e
        except PyMongoError as e:
            raise StorageError(f"Insert failed: {e}", DOCUMENT, "insert") from e

    def find_by_id(self, document_id: str) -> dict[str, Any] | None:
        collection = self._require()
        try:
            return _from_mongo(collection.find_one({"_id": document_id}))
        except PyMongoError as e:
            raise StorageError(f"Lookup failed: {e}", DOCUMENT, "find_by_id") from e

    def find_one(self, field_name: str, value: Any) -> dict[str, Any] | None:
        collection = self._require()
        key = "_id" if field_name == "id" else field_name
        try:
            return _from_mongo(collection.find_one({key: value}))
        except PyMongoError as e:
            raise StorageError(f"Lookup failed: {e}", DOCUMENT, "find_one") from e

    def update(self, document_id: str, fields: dict[str, Any]) -> bool:
        collection = self._require()
        try:
            result = collection.update_one({"_id": document_id}, {"$set": fields})
        except DuplicateKeyError as e:
            raise self._duplicate(e, fields) from e
        except PyMongoError as e:
            raise StorageError(f"Update failed: {e}", DOCUMENT, "update") from e
        return result.matched_count > 0

    def delete(self, document_id: str) -> bool:
        collection = self._require()
        try:
            result = collection.delete_one({"_id": document_id})
        except PyMongoError as e:
            raise StorageError(f"Delete failed: {e}", DOCUMENT, "delete") from e
        return result.deleted_count > 0

    @staticmethod
    def _duplicate(error: DuplicateKeyError, fields: dict[str, Any]) -> DuplicateError:
        key_pattern = (error.details or {}).get("keyPattern") or {}
        field_name = "id" if "_id" in key_pattern else "email"
        value = fields.get(field_name) or fields.get("id") or ""
        return DuplicateError(f"Duplicate {field_name}: {value}", field_name, value)
