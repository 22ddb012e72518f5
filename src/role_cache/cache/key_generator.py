"""Collision-resistant, version-stamped cache keys.

A physical key is ``"{base_key}_{digest}"`` where the digest is a truncated,
base64-encoded SHA-256 of::

    "{base_key}_{k1:v1_k2:v2}_v{master_version}_{salt}"

Parameters are sorted by name before serialization, so the insertion order of
``params`` never changes the key. Because the master version is part of the
digest input, bumping it makes every previously written key unreachable.
"""

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import uuid4

from .master_version import MasterVersionStore

logger = logging.getLogger(__name__)

DEFAULT_HASH_LENGTH = 32


@dataclass(frozen=True)
class GeneratedKey:
    """A physical key, the master version it was derived from, and whether it
    came from the fallback path."""

    key: str
    is_fallback: bool = False
    version: str | None = None


def serialize_params(params: Mapping[str, Any] | None) -> str:
    """Serialize params as ``k1:v1_k2:v2`` with keys in lexicographic order."""
    if not params:
        return ""
    return "_".join(f"{name}:{params[name]}" for name in sorted(params))


class DigestKeyGenerator:
    """Builds physical cache keys from ``(base_key, params)``.

    The generator reads the master version on every call; it never caches it,
    so a bump made through the same MasterVersionStore is visible immediately.
    """

    def __init__(
        self,
        version_store: MasterVersionStore,
        salt: str | None = None,
        hash_length: int = DEFAULT_HASH_LENGTH,
    ):
        """Initialize the generator.

        Args:
            version_store: Source of the current master version
            salt: Deployment secret mixed into every digest. When missing, a
                random per-process salt is used and the generator is degraded:
                keys stay stable within this process only.
            hash_length: Number of base64 characters kept from the digest
        """
        self.version_store = version_store
        self.hash_length = hash_length
        self.is_degraded = not salt

        if salt:
            self._salt = salt
        else:
            self._salt = secrets.token_urlsafe(32)
            logger.warning(
                "No cache key salt configured; using a per-process salt. "
                "Cache entries will not be shared between processes."
            )

    def _fallback_key(self, base_key: str) -> str:
        return f"{base_key}_{time.time_ns()}_{uuid4().hex[:8]}"

    def generate(self, base_key: str, params: Mapping[str, Any] | None = None) -> GeneratedKey:
        """Build the physical key, reporting whether the fallback was used.

        A master version that could not be loaded also yields a fallback key.
        """
        try:
            token = self.version_store.resolve()
            if token.is_fallback:
                return GeneratedKey(key=self._fallback_key(base_key), is_fallback=True)

            version = token.value
            param_string = serialize_params(params)

            parts = [base_key]
            if param_string:
                parts.append(param_string)
            parts.append(f"v{version}")
            parts.append(self._salt)
            key_string = "_".join(parts)

            digest = hashlib.sha256(key_string.encode("utf-8")).digest()
            encoded = base64.b64encode(digest).decode("ascii")[: self.hash_length]
            return GeneratedKey(key=f"{base_key}_{encoded}", version=version)

        except Exception as e:
            # A unique key can never hit, so a broken generator degrades to a miss
            fallback = self._fallback_key(base_key)
            logger.error(f"Cache key generation failed for {base_key}, using {fallback}: {e}")
            return GeneratedKey(key=fallback, is_fallback=True)

    def make_key(self, base_key: str, params: Mapping[str, Any] | None = None) -> str:
        """Build the physical key for ``(base_key, params)``.

        Args:
            base_key: Cache family name (e.g. ``"user"``, ``"role_sheet"``)
            params: Parameters distinguishing instances of the family

        Returns:
            ``"{base_key}_{hash}"``, or a unique non-hitting key if hashing failed
        """
        return self.generate(base_key, params).key
