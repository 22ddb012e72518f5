"""Durable key/value property store.

The property store holds small string values that must survive process
restarts: the master cache version, per-source content hashes, the last known
state of every user, bounded role histories and sessions.

Persisted layout:
- ``MASTER_CACHE_VERSION``
- ``SHEET_HASH_{sourceName}``
- ``user_state_{email}`` (JSON)
- ``role_history_{email}`` (JSON list)
- ``session_{email}`` (JSON)

Every operation is one bounded attempt. Failures surface as PropertyStoreError;
deciding what a failure means (miss, "changed", ...) is the caller's job.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from ..exceptions import PropertyStoreError

logger = logging.getLogger(__name__)


@runtime_checkable
class PropertyStore(Protocol):
    """Interface consumed from the durable store collaborator."""

    def read(self, key: str) -> str | None:
        """Return the stored value or None when absent."""
        ...

    def write(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` (overwrites)."""
        ...

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""
        ...


class MongoPropertyStore:
    """PropertyStore backed by a MongoDB collection.

    Documents have the shape ``{"_id": key, "value": str, "updated_at": datetime}``.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    def read(self, key: str) -> str | None:
        try:
            document = self.collection.find_one({"_id": key}, {"value": 1})
        except PyMongoError as e:
            raise PropertyStoreError(
                message="Property read failed",
                details={"key": key},
                original_exception=e,
            ) from e

        if document is None:
            return None
        return document.get("value")

    def write(self, key: str, value: str) -> None:
        try:
            self.collection.update_one(
                {"_id": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as e:
            raise PropertyStoreError(
                message="Property write failed",
                details={"key": key},
                original_exception=e,
            ) from e

    def delete(self, key: str) -> None:
        try:
            self.collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise PropertyStoreError(
                message="Property delete failed",
                details={"key": key},
                original_exception=e,
            ) from e

    def keys(self, prefix: str = "") -> list[str]:
        query = {"_id": {"$regex": f"^{re.escape(prefix)}"}} if prefix else {}
        try:
            return [document["_id"] for document in self.collection.find(query, {"_id": 1})]
        except PyMongoError as e:
            raise PropertyStoreError(
                message="Property key listing failed",
                details={"prefix": prefix},
                original_exception=e,
            ) from e
