"""Base cache class with common Redis operations and namespacing.

This module provides the foundation for both cache tiers: the user-scoped
versioned cache and the global resilient cache. Each instance is bound to a
namespace, and every physical Redis key is prefixed with it, so the
"user-scoped" and "global-scoped" caches are two disjoint key spaces.

Unlike a plain read-through helper, operations here raise CacheBackendError on
Redis failures instead of swallowing them: the layers above need to tell a
miss apart from an infrastructure problem (they still fail open).
"""

import hashlib
import logging
from typing import Any

from redis.exceptions import RedisError

from ..exceptions import CacheBackendError

logger = logging.getLogger(__name__)

USER_NAMESPACE_PREFIX = "user"
GLOBAL_NAMESPACE = "global"


def user_namespace(user: str) -> str:
    """Namespace for one requesting identity.

    The identity is hashed so that key listings never reveal email addresses.
    """
    digest = hashlib.sha256(user.strip().lower().encode("utf-8")).hexdigest()[:16]
    return f"{USER_NAMESPACE_PREFIX}:{digest}"


class BaseCache:
    """Redis-backed key/value namespace.

    Provides common functionality for all cache tiers:
    - Namespace-prefixed physical keys
    - String get/put/remove with TTL
    - Conversion of Redis errors into CacheBackendError
    """

    def __init__(self, redis_client: Any | None = None, namespace: str = ""):
        """Initialize base cache with optional Redis client.

        Args:
            redis_client: Optional Redis client. If None, cache will be disabled.
            namespace: Key prefix isolating this cache from the others
        """
        self.redis_client = redis_client
        self.namespace = namespace
        self.logger = logging.getLogger(self.__class__.__name__)

    def child(self, namespace: str) -> "BaseCache":
        """Return a cache sharing this Redis client but bound to another namespace."""
        return BaseCache(self.redis_client, namespace)

    def for_user(self, user: str) -> "BaseCache":
        """Return the namespace belonging to ``user``."""
        return self.child(user_namespace(user))

    def physical_key(self, key: str) -> str:
        """Prefix ``key`` with this cache's namespace."""
        return f"{self.namespace}:{key}" if self.namespace else key

    def is_available(self) -> bool:
        """Whether a Redis client is configured.

        No ping is issued here; a dead server shows up as CacheBackendError on
        the next real command.
        """
        return self.redis_client is not None

    def _require_client(self, operation: str, key: str) -> Any:
        if self.redis_client is None:
            raise CacheBackendError(
                message="Redis cache is disabled",
                details={"operation": operation, "key": key},
            )
        return self.redis_client

    def get_string(self, key: str) -> str | None:
        """Get a string value from cache.

        Args:
            key: Logical key (namespace is added here)

        Returns:
            String value or None if key doesn't exist

        Raises:
            CacheBackendError: If Redis is disabled or the command fails
        """
        client = self._require_client("get", key)
        full_key = self.physical_key(key)

        try:
            value = client.get(full_key)
        except RedisError as e:
            self.logger.warning(f"Redis get error for {full_key}: {e}")
            raise CacheBackendError(
                message="Redis get failed",
                details={"key": full_key},
                original_exception=e,
            ) from e

        if value is None:
            return None

        if isinstance(value, bytes):
            value = value.decode("utf-8")

        return value

    def set_string(self, key: str, value: str, ttl: int) -> None:
        """Store a string value in cache.

        Args:
            key: Logical key
            value: String value to cache
            ttl: Time to live in seconds

        Raises:
            CacheBackendError: If Redis is disabled or the command fails
        """
        client = self._require_client("set", key)
        full_key = self.physical_key(key)

        try:
            client.setex(full_key, ttl, value)
        except RedisError as e:
            self.logger.warning(f"Redis set error for {full_key}: {e}")
            raise CacheBackendError(
                message="Redis set failed",
                details={"key": full_key, "ttl": ttl},
                original_exception=e,
            ) from e

        self.logger.debug(f"Cached {full_key} with TTL {ttl}s")

    def delete(self, key: str) -> bool:
        """Delete a key from cache.

        Returns:
            True if a key was removed, False if it did not exist

        Raises:
            CacheBackendError: If Redis is disabled or the command fails
        """
        client = self._require_client("delete", key)
        full_key = self.physical_key(key)

        try:
            removed = client.delete(full_key)
        except RedisError as e:
            self.logger.warning(f"Redis delete error for {full_key}: {e}")
            raise CacheBackendError(
                message="Redis delete failed",
                details={"key": full_key},
                original_exception=e,
            ) from e

        self.logger.debug(f"Deleted cache key {full_key}")
        return bool(removed)
