"""User-scoped, versioned cache store.

Entries are written as JSON-serialized CacheEntry records under keys produced
by the DigestKeyGenerator, inside the Redis namespace of the requesting user.
TTLs are clamped to a hard ceiling.

Lookups return a CacheLookup with a reason code so callers can tell a plain
miss from an unreachable backend or a corrupt entry. ``get`` collapses all of
those to None.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import CacheBackendError
from .base_cache import BaseCache
from .key_generator import DigestKeyGenerator
from .master_version import MasterVersionStore, now_millis

logger = logging.getLogger(__name__)

DEFAULT_MAX_TTL_SECONDS = 600
DEFAULT_TTL_SECONDS = 300


class CacheEntry(BaseModel):
    """One cached value with the metadata it was written under.

    Entries are immutable; a newer write replaces the whole record.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    data: Any = Field(description="Cached payload (JSON-compatible)")
    stored_at_millis: int = Field(description="Write time in epoch milliseconds")
    version: str = Field(description="Master version at write time")
    base_key: str = Field(description="Cache family name")
    params: dict[str, str] = Field(default_factory=dict, description="Family parameters")


class LookupStatus(str, Enum):
    """Outcome of a cache lookup."""

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"
    MALFORMED = "malformed"
    DEGRADED_KEY = "degraded_key"


@dataclass(frozen=True)
class CacheLookup:
    """Result of ScopedCacheStore.lookup."""

    status: LookupStatus
    key: str
    entry: CacheEntry | None = None

    @property
    def hit(self) -> bool:
        return self.status is LookupStatus.HIT

    @property
    def data(self) -> Any:
        return self.entry.data if self.entry is not None else None


def _stringify_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    return {str(name): str(value) for name, value in (params or {}).items()}


class ScopedCacheStore:
    """Versioned key/value cache in the requesting user's namespace."""

    def __init__(
        self,
        cache: BaseCache,
        key_generator: DigestKeyGenerator,
        version_store: MasterVersionStore,
        max_ttl_seconds: int = DEFAULT_MAX_TTL_SECONDS,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] = now_millis,
    ):
        self.cache = cache
        self.key_generator = key_generator
        self.version_store = version_store
        self.max_ttl_seconds = max_ttl_seconds
        self.default_ttl_seconds = min(default_ttl_seconds, max_ttl_seconds)
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def clamp_ttl(self, ttl: int | None) -> int:
        """Clamp ``ttl`` into ``[1, max_ttl_seconds]``; None means the default TTL."""
        if ttl is None:
            return self.default_ttl_seconds
        return max(1, min(int(ttl), self.max_ttl_seconds))

    def lookup(
        self, base_key: str, params: Mapping[str, Any] | None, user: str
    ) -> CacheLookup:
        """Look up ``(base_key, params)`` for ``user``.

        Returns:
            CacheLookup whose status is HIT with the entry, or MISS, ERROR,
            MALFORMED or DEGRADED_KEY without one
        """
        generated = self.key_generator.generate(base_key, params)
        if generated.is_fallback:
            return CacheLookup(status=LookupStatus.DEGRADED_KEY, key=generated.key)

        namespace = self.cache.for_user(user)
        try:
            raw = namespace.get_string(generated.key)
        except CacheBackendError as e:
            self.logger.warning(
                f"Cache lookup failed for {base_key}: {e}",
                extra={"cache_family": base_key, "lookup_status": LookupStatus.ERROR.value},
            )
            return CacheLookup(status=LookupStatus.ERROR, key=generated.key)

        if raw is None:
            self.logger.debug(
                f"Cache MISS: {base_key}",
                extra={"cache_family": base_key, "lookup_status": LookupStatus.MISS.value},
            )
            return CacheLookup(status=LookupStatus.MISS, key=generated.key)

        try:
            entry = CacheEntry.model_validate_json(raw)
        except PydanticValidationError as e:
            self.logger.warning(f"Malformed cache entry for {base_key}: {e.error_count()} errors")
            return CacheLookup(status=LookupStatus.MALFORMED, key=generated.key)

        self.logger.debug(
            f"Cache HIT: {base_key}",
            extra={"cache_family": base_key, "lookup_status": LookupStatus.HIT.value},
        )
        return CacheLookup(status=LookupStatus.HIT, key=generated.key, entry=entry)

    def get(self, base_key: str, params: Mapping[str, Any] | None, user: str) -> Any | None:
        """Return the cached data, or None on miss, error or malformed entry."""
        return self.lookup(base_key, params, user).data

    def set(
        self,
        base_key: str,
        params: Mapping[str, Any] | None,
        data: Any,
        ttl: int | None,
        user: str,
    ) -> bool:
        """Cache ``data`` under ``(base_key, params)`` for ``user``.

        Args:
            base_key: Cache family name
            params: Family parameters
            data: JSON-compatible payload
            ttl: Requested TTL in seconds, clamped to the ceiling
            user: Requesting identity owning the namespace

        Returns:
            True if stored, False on any failure, including a master version
            that could not be loaded
        """
        generated = self.key_generator.generate(base_key, params)
        if generated.is_fallback:
            return False

        try:
            entry = CacheEntry(
                data=data,
                stored_at_millis=self.clock(),
                version=generated.version,
                base_key=base_key,
                params=_stringify_params(params),
            )
            payload = entry.model_dump_json()
        except (PydanticValidationError, ValueError, TypeError) as e:
            self.logger.warning(f"Cannot serialize cache entry for {base_key}: {e}")
            return False

        effective_ttl = self.clamp_ttl(ttl)
        try:
            self.cache.for_user(user).set_string(generated.key, payload, effective_ttl)
        except CacheBackendError as e:
            self.logger.warning(f"Cache write failed for {base_key}: {e}")
            return False

        self.logger.debug(
            f"Cache SET: {base_key} (TTL {effective_ttl}s)",
            extra={"cache_family": base_key, "master_version": generated.version},
        )
        return True

    def remove(self, base_key: str, params: Mapping[str, Any] | None, user: str) -> bool:
        """Remove the entry for ``(base_key, params)`` from ``user``'s namespace.

        Returns:
            True if the delete was issued, False on failure
        """
        key = self.key_generator.make_key(base_key, params)
        return self.remove_key(key, user)

    def remove_key(self, key: str, user: str) -> bool:
        """Remove an already resolved physical key from ``user``'s namespace."""
        try:
            self.cache.for_user(user).delete(key)
        except CacheBackendError as e:
            self.logger.warning(f"Cache remove failed for {key}: {e}")
            return False

        self.logger.debug(f"Cache REMOVE: {key}")
        return True
