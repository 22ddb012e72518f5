"""Content-hash change detection for data sources.

Each source (Staff, Settings, a role sheet) has its last seen content hash
stored as ``SHEET_HASH_{source_name}`` in the property store. Any failure is
reported as "changed", so a broken hash never keeps stale data alive.
"""

import base64
import hashlib
import json
import logging
from typing import Any

from ..database.property_store import PropertyStore
from ..exceptions import PropertyStoreError

logger = logging.getLogger(__name__)

SHEET_HASH_PREFIX = "SHEET_HASH_"


def compute_data_hash(snapshot: Any) -> str:
    """Hash ``snapshot`` (order-sensitive JSON, MD5, base64).

    Raises:
        TypeError / ValueError: If the snapshot cannot be serialized
    """
    serialized = json.dumps(snapshot, ensure_ascii=False, separators=(",", ":"), default=str)
    digest = hashlib.md5(serialized.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class SheetHashStore:
    """Remembers the last content hash of each data source."""

    def __init__(self, property_store: PropertyStore):
        self.property_store = property_store

    @staticmethod
    def property_key(source_name: str) -> str:
        return f"{SHEET_HASH_PREFIX}{source_name}"

    def stored_hash(self, source_name: str) -> str | None:
        """Return the stored hash, or None if absent or unreadable."""
        try:
            return self.property_store.read(self.property_key(source_name))
        except PropertyStoreError as e:
            logger.warning(f"Cannot read stored hash for {source_name}: {e}")
            return None

    def has_changed(self, source_name: str, snapshot: Any) -> bool:
        """Report whether ``snapshot`` differs from the last one seen.

        Args:
            source_name: Data source name (e.g. ``"Staff"``)
            snapshot: Current content, typically the source rows

        Returns:
            True on first observation, on a content mismatch (the new hash is
            stored) and on any error; False only when the hash matches
        """
        try:
            current_hash = compute_data_hash(snapshot)
            key = self.property_key(source_name)
            previous_hash = self.property_store.read(key)

            if previous_hash == current_hash:
                logger.debug(f"No change detected in {source_name}")
                return False

            self.property_store.write(key, current_hash)
            if previous_hash is None:
                logger.info(
                    f"First hash recorded for {source_name}", extra={"source_name": source_name}
                )
            else:
                logger.info(f"Change detected in {source_name}", extra={"source_name": source_name})
            return True

        except (PropertyStoreError, TypeError, ValueError) as e:
            logger.warning(
                f"Change detection failed for {source_name}, assuming changed: {e}",
                extra={"source_name": source_name},
            )
            return True

    def clear_all(self) -> int:
        """Delete every stored source hash.

        Returns:
            Number of hashes deleted (0 if the store is unavailable)
        """
        try:
            keys = self.property_store.keys(SHEET_HASH_PREFIX)
            for key in keys:
                self.property_store.delete(key)
        except PropertyStoreError as e:
            logger.error(f"Failed to clear stored source hashes: {e}")
            return 0

        logger.info(f"Cleared {len(keys)} stored source hashes")
        return len(keys)
