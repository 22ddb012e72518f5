"""MongoDB connection manager for the durable property store and row source.

This module provides a thread-safe singleton around one ``MongoClient``. The
property store (master cache version, sheet hashes, user state, role history,
sessions) and the sheet row source both obtain their collections from here.

Every request path runs inside an external wall-clock budget, so connecting is
a single bounded attempt (``serverSelectionTimeoutMS``) with no retry loop.

Example:
    >>> from src.role_cache.database.connection import get_connection_manager
    >>> manager = get_connection_manager()
    >>> manager.connect()
    >>> properties = manager.get_collection("properties")
    >>> manager.disconnect()
"""

import logging
import threading
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from src.config.settings import settings

from ..exceptions import PropertyStoreError

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Thread-safe MongoDB connection manager.

    Implements singleton pattern - use get_connection_manager() to retrieve instance.
    """

    _instance: Optional["ConnectionManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "ConnectionManager":
        """Implement singleton pattern with thread-safe instantiation.

        Returns:
            The single ConnectionManager instance for the application
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return

        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None
        self._connected: bool = False
        self._lock = threading.Lock()
        self._initialized = True

        logger.debug("ConnectionManager initialized")

    def connect(self) -> bool:
        """Establish connection to MongoDB with a single bounded attempt.

        Returns:
            True if connection successful

        Raises:
            PropertyStoreError: If the server cannot be reached in time
        """
        with self._lock:
            if self._connected:
                logger.debug("Already connected to MongoDB")
                return True

            logger.info("Attempting to connect to MongoDB...")
            timeout_ms = settings.mongodb_timeout * 1000

            try:
                self._client = MongoClient(
                    settings.mongodb_uri,
                    serverSelectionTimeoutMS=timeout_ms,
                    connectTimeoutMS=timeout_ms,
                    socketTimeoutMS=timeout_ms,
                )
                self._client.admin.command("ping")
                self._database = self._client[settings.mongodb_database]
                self._connected = True

                logger.info(
                    f"Connected to MongoDB (database: {settings.mongodb_database})"
                )
                return True

            except PyMongoError as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                self._database = None
                raise PropertyStoreError(
                    message="Failed to connect to MongoDB",
                    details={"database": settings.mongodb_database},
                    original_exception=e,
                ) from e

    def disconnect(self) -> bool:
        """Close the MongoDB connection and cleanup resources.

        Returns:
            True if disconnection successful or not connected, False on error
        """
        with self._lock:
            if not self._connected or self._client is None:
                logger.debug("Not connected to MongoDB, nothing to disconnect")
                return True

            try:
                self._client.close()
                self._connected = False
                self._database = None
                self._client = None
                logger.info("Disconnected from MongoDB")
                return True

            except PyMongoError as e:
                logger.error(f"Error during MongoDB disconnection: {e}")
                return False

    def get_database(self) -> Database:
        """Get the configured database, connecting lazily.

        Raises:
            PropertyStoreError: If no connection can be established
        """
        if not self._connected or self._database is None:
            self.connect()
        return self._database

    def get_collection(self, name: str) -> Collection:
        """Get a collection from the configured database."""
        return self.get_database()[name]

    def health_check(self) -> bool:
        """Ping MongoDB once.

        Returns:
            True if health check passes, False otherwise
        """
        if not self._connected or self._client is None:
            return False

        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB health check failed: {e}")
            self._connected = False
            return False


# Global singleton instance
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get the global singleton ConnectionManager instance."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager
