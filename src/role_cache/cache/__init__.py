"""Versioned, dependency-aware caching for role reference data.

Core Components:
- key_generator: salted, version-stamped digest keys
- master_version: the global token whose change invalidates every versioned key
- scoped_cache: per-user versioned entries with a TTL ceiling
- dependencies: cache family graph and cascading invalidation
- change_detection: per-source content hashes
- global_cache: version-independent staff directory cache
- cache_manager: wiring of all of the above

Design Principles:
- Fail open: a Redis or MongoDB failure is a miss or a "changed", never stale data
- Escalate when unsure: changes that cannot be targeted bump the master version

Example:
    >>> from src.role_cache.cache import get_cache_manager
    >>> cache_manager = get_cache_manager()
    >>> cache_manager.get_cached("role_sheet", {"role": "Nurse"}, "a@school.org")
"""

from .cache_manager import CacheManager, get_cache_manager, initialize_cache
from .dependencies import CacheFamily, InvalidationReport
from .scoped_cache import CacheEntry, CacheLookup, LookupStatus

__all__ = [
    "CacheEntry",
    "CacheFamily",
    "CacheLookup",
    "CacheManager",
    "InvalidationReport",
    "LookupStatus",
    "get_cache_manager",
    "initialize_cache",
]
