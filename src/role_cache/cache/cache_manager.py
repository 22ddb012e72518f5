"""Centralized cache manager wiring every cache component together.

The manager owns one Redis client and builds the component graph around it:

    MasterVersionStore --> DigestKeyGenerator --> ScopedCacheStore
            |                                        |
            +------------> DependencyGraphInvalidator <+
    SheetHashStore
    GlobalResilientCache

Components receive their collaborators explicitly; the module-level
``get_cache_manager()`` only exists so application code can share one
instance built from settings.
"""

import logging
from typing import Any, Mapping, Optional

import redis
from redis.exceptions import ConnectionError, RedisError

from src.config.settings import Settings, settings

from ..database.connection import ConnectionManager, get_connection_manager
from ..database.property_store import MongoPropertyStore, PropertyStore
from ..database.row_source import MongoRowSource, RowSource
from ..users.staff import StaffDirectory
from .base_cache import GLOBAL_NAMESPACE, BaseCache
from .change_detection import SheetHashStore
from .dependencies import (
    DEFAULT_CACHE_DEPENDENCIES,
    DependencyGraphInvalidator,
    DependencyMap,
    InvalidationReport,
    build_dependency_map,
)
from .global_cache import GlobalResilientCache
from .key_generator import DigestKeyGenerator
from .master_version import MasterVersionStore
from .scoped_cache import CacheLookup, ScopedCacheStore

logger = logging.getLogger(__name__)


def create_redis_client(config: Settings = settings) -> Any | None:
    """Connect to Redis, or return None if disabled or unreachable.

    Uses redis.from_url() for protocol-based SSL handling (rediss:// = SSL).
    """
    if not config.redis_enabled:
        logger.info("Redis disabled by configuration")
        return None

    try:
        client = redis.from_url(
            config.redis_url,
            socket_connect_timeout=config.redis_socket_timeout,
            socket_timeout=config.redis_socket_timeout,
            max_connections=config.redis_max_connections,
            decode_responses=True,
        )
        client.ping()
    except (ConnectionError, RedisError) as e:
        logger.warning(f"Failed to connect to Redis: {e}")
        logger.warning("Continuing without Redis cache (every lookup is a miss)")
        return None

    ssl_status = "with SSL" if config.redis_ssl else "without SSL"
    logger.info(f"Connected to Redis at {config.redis_host}:{config.redis_port} {ssl_status}")
    return client


class CacheManager:
    """Entry point for versioned, dependency-aware caching.

    Attributes:
        version_store: Master version owner
        key_generator: Physical key builder
        scoped_cache: User-scoped versioned store
        invalidator: Dependency graph invalidator
        hash_store: Per-source change detection
        global_cache: Staff directory cache, independent of the master version
    """

    def __init__(
        self,
        redis_client: Any | None,
        property_store: PropertyStore,
        row_source: RowSource,
        config: Settings = settings,
        dependencies: Mapping[str, list[str]] | None = None,
        connection_manager: ConnectionManager | None = None,
    ):
        """Build the component graph.

        Args:
            redis_client: Redis client, or None to run with caching disabled
            property_store: Durable store for versions, hashes and user state
            row_source: Authoritative source rows
            config: Settings supplying salt, TTLs and versions
            dependencies: Dependency map; defaults to DEFAULT_CACHE_DEPENDENCIES
            connection_manager: MongoDB connection owning the property store,
                checked by health reports and closed by disconnect()

        Raises:
            DependencyGraphError: If the dependency map is invalid
        """
        self.config = config
        self.property_store = property_store
        self.row_source = row_source
        self._redis_client = redis_client
        self.connection_manager = connection_manager

        self.dependency_map: DependencyMap = build_dependency_map(
            dependencies if dependencies is not None else DEFAULT_CACHE_DEPENDENCIES
        )

        self.version_store = MasterVersionStore(
            property_store,
            static_version=config.cache_version,
            max_age_millis=config.cache_version_refresh_seconds * 1000,
        )
        self.key_generator = DigestKeyGenerator(
            self.version_store,
            salt=config.cache_key_salt,
            hash_length=config.cache_key_hash_length,
        )

        root_cache = BaseCache(redis_client)
        self.scoped_cache = ScopedCacheStore(
            root_cache,
            self.key_generator,
            self.version_store,
            max_ttl_seconds=config.cache_max_ttl_seconds,
            default_ttl_seconds=config.cache_default_ttl_seconds,
        )
        self.invalidator = DependencyGraphInvalidator(
            self.dependency_map, self.version_store, self.scoped_cache
        )
        self.hash_store = SheetHashStore(property_store)
        self.global_cache = GlobalResilientCache(
            root_cache.child(GLOBAL_NAMESPACE),
            row_source,
            ttl_seconds=config.global_cache_staff_ttl_seconds,
        )

        logger.info(
            f"CacheManager initialized (Redis {'enabled' if self.is_available() else 'disabled'})"
        )

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "CacheManager":
        """Build a manager connected to the configured Redis and MongoDB.

        Raises:
            PropertyStoreError: If MongoDB cannot be reached
        """
        connection_manager = get_connection_manager()
        property_store = MongoPropertyStore(
            connection_manager.get_collection(config.mongodb_properties_collection)
        )
        row_source = MongoRowSource(
            connection_manager.get_collection(config.mongodb_sheets_collection)
        )
        return cls(
            create_redis_client(config),
            property_store,
            row_source,
            config=config,
            connection_manager=connection_manager,
        )

    # =========================================================================
    # Versioned user-scoped cache
    # =========================================================================

    def lookup_cached(
        self, base_key: str, params: Mapping[str, Any] | None, user: str
    ) -> CacheLookup:
        """Look up an entry, exposing why it was not a hit."""
        return self.scoped_cache.lookup(base_key, params, user)

    def get_cached(self, base_key: str, params: Mapping[str, Any] | None, user: str) -> Any | None:
        """Return cached data for ``(base_key, params)`` or None."""
        return self.scoped_cache.get(base_key, params, user)

    def set_cached(
        self,
        base_key: str,
        params: Mapping[str, Any] | None,
        data: Any,
        ttl: int | None = None,
        user: str = "",
    ) -> bool:
        """Cache data; ``ttl`` is clamped to ``cache_max_ttl_seconds``."""
        return self.scoped_cache.set(base_key, params, data, ttl, user)

    def remove_cached(self, base_key: str, params: Mapping[str, Any] | None, user: str) -> bool:
        return self.scoped_cache.remove(base_key, params, user)

    def invalidate(self, base_key: str, user: str = "") -> InvalidationReport:
        """Invalidate every cache family derived from ``base_key``."""
        return self.invalidator.on_changed(base_key, user)

    # =========================================================================
    # Master version
    # =========================================================================

    def begin_request(self) -> None:
        """Start a request: the next version read goes to the property store.

        A bump made by another process is therefore visible to every request
        that starts after it.
        """
        self.version_store.forget()

    def current_version(self) -> str:
        return self.version_store.current()

    def bump_version(self) -> bool:
        """Make every versioned entry unreachable."""
        return self.version_store.bump()

    # =========================================================================
    # Global staff directory
    # =========================================================================

    def get_staff_directory(self) -> StaffDirectory | None:
        """Return the staff directory from the global cache (read-through)."""
        return self.global_cache.read()

    def refresh_staff_directory(self, rows: list[list[Any]] | None = None) -> StaffDirectory | None:
        """Replace the global cache entry.

        Args:
            rows: Staff rows already read by the caller; when None the staff
                source is read again
        """
        if rows is None:
            return self.global_cache.refresh()
        return self.global_cache.store(rows)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def force_clean_all_caches(self) -> dict[str, Any]:
        """Invalidate everything: versioned entries, source hashes, global blob.

        Returns:
            Summary of what was done
        """
        bumped = self.version_store.bump()
        hashes_cleared = self.hash_store.clear_all()
        global_cleared = self.global_cache.clear()

        logger.warning(
            f"Force clean: bumped={bumped}, hashes_cleared={hashes_cleared}, "
            f"global_cleared={global_cleared}"
        )
        return {
            "version_bumped": bumped,
            "new_version": self.version_store.current(),
            "hashes_cleared": hashes_cleared,
            "global_cleared": global_cleared,
        }

    # =========================================================================
    # Connection status
    # =========================================================================

    def is_available(self) -> bool:
        """Check if a Redis client is configured."""
        return self._redis_client is not None

    def health_check(self) -> bool:
        """Ping Redis once.

        Returns:
            True if health check passes, False otherwise
        """
        if self._redis_client is None:
            return False

        try:
            self._redis_client.ping()
            return True
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    def property_store_health_check(self) -> bool | None:
        """Ping MongoDB through the connection manager.

        Returns:
            The ping result, or None when no connection manager is attached
        """
        if self.connection_manager is None:
            return None
        return self.connection_manager.health_check()

    def disconnect(self) -> bool:
        """Close the Redis connection pool and the MongoDB client.

        Returns:
            True if every attached connection closed cleanly, False on error
        """
        redis_closed = True
        if self._redis_client is None:
            logger.debug("Not connected to Redis, nothing to disconnect")
        else:
            try:
                self._redis_client.connection_pool.disconnect()
                logger.info("Disconnected from Redis")
            except RedisError as e:
                logger.error(f"Error during Redis disconnection: {e}")
                redis_closed = False

        mongo_closed = True
        if self.connection_manager is not None:
            mongo_closed = self.connection_manager.disconnect()

        return redis_closed and mongo_closed

    def get_status(self) -> dict[str, Any]:
        """Get cache status for monitoring.

        Returns:
            Dict with cache status information
        """
        return {
            "available": self.is_available(),
            "health_check": self.health_check(),
            "property_store_healthy": self.property_store_health_check(),
            "master_version": self.version_store.current(),
            "key_salt_degraded": self.key_generator.is_degraded,
            "max_ttl_seconds": self.scoped_cache.max_ttl_seconds,
            "dependency_families": sorted(str(ref) for ref in self.dependency_map),
            "redis_host": self.config.redis_host if self.is_available() else None,
            "redis_port": self.config.redis_port if self.is_available() else None,
        }


# Global singleton instance
_cache_manager: Optional[CacheManager] = None


def initialize_cache(manager: CacheManager | None = None) -> CacheManager:
    """Install the shared cache manager.

    Args:
        manager: Prebuilt manager; when None one is built from settings

    Returns:
        The installed CacheManager
    """
    global _cache_manager
    _cache_manager = manager if manager is not None else CacheManager.from_settings()
    return _cache_manager


def get_cache_manager() -> CacheManager:
    """Get the shared CacheManager, building it from settings on first call."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager.from_settings()
    return _cache_manager
