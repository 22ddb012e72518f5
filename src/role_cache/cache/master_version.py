"""Master cache version: the global token that invalidates every versioned key.

The token has the form ``"{semantic_version}_{epoch_millis}"``. It lives in
the durable property store under ``MASTER_CACHE_VERSION`` and is memoised in
the owning MasterVersionStore instance.

Lifecycle:
- first access loads the stored token, or creates and stores one
- ``bump()`` replaces it with a fresh token (storage first, then memory)
- any storage error clears the memo so the next access reloads
- the memo expires after ``max_age_millis`` and ``forget()`` drops it, so a
  bump made by another process becomes visible here
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..database.property_store import PropertyStore
from ..exceptions import PropertyStoreError

logger = logging.getLogger(__name__)

MASTER_VERSION_KEY = "MASTER_CACHE_VERSION"


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def token_millis(token: str | None) -> int:
    """Epoch-millisecond suffix of a token, or 0 if it has none."""
    try:
        return int(token.rsplit("_", 1)[1])
    except (AttributeError, IndexError, ValueError):
        return 0


@dataclass(frozen=True)
class VersionToken:
    """A master version and whether it is a local stand-in for the stored one."""

    value: str
    is_fallback: bool = False


class MasterVersionStore:
    """Loads, memoises and bumps the master cache version.

    One instance is created at startup and passed to every component that
    needs the version.
    """

    def __init__(
        self,
        property_store: PropertyStore,
        static_version: str = "1.0.0",
        clock: Callable[[], int] = now_millis,
        max_age_millis: int | None = None,
    ):
        """Initialize the store.

        Args:
            property_store: Durable store holding MASTER_CACHE_VERSION
            static_version: Deployment version prefix of every token
            clock: Returns epoch milliseconds
            max_age_millis: How long a memoised token is trusted before it is
                reloaded; None keeps it until ``forget()`` or a storage error
        """
        self.property_store = property_store
        self.static_version = static_version
        self.clock = clock
        self.max_age_millis = max_age_millis
        self._cached_version: str | None = None
        self._cached_at = 0
        self._last_issued_millis = 0

    def _new_token(self) -> str:
        millis = self.clock()
        # Tokens strictly increase past anything issued or loaded here, even
        # within one millisecond
        floor = max(self._last_issued_millis, token_millis(self._cached_version))
        if millis <= floor:
            millis = floor + 1
        self._last_issued_millis = millis
        return f"{self.static_version}_{millis}"

    def _memo_is_fresh(self) -> bool:
        if self._cached_version is None:
            return False
        if self.max_age_millis is None:
            return True
        return self.clock() - self._cached_at < self.max_age_millis

    def _remember(self, version: str) -> None:
        self._cached_version = version
        self._cached_at = self.clock()

    def resolve(self) -> VersionToken:
        """Return the current master version, flagging storage fallbacks.

        Returns:
            The memoised token while fresh; otherwise the stored token
            (created if absent). If the property store fails, a token local
            to this call with ``is_fallback=True``. It matches no stored
            entry and must not be used to write one.
        """
        if self._memo_is_fresh():
            return VersionToken(self._cached_version)

        try:
            version = self.property_store.read(MASTER_VERSION_KEY)
            if not version:
                version = self._new_token()
                self.property_store.write(MASTER_VERSION_KEY, version)
                logger.info(
                    f"Initialized master cache version: {version}",
                    extra={"master_version": version},
                )
            elif self._cached_version is not None and version != self._cached_version:
                logger.info(
                    f"Master cache version changed in storage: {self._cached_version} -> {version}",
                    extra={"master_version": version},
                )

            self._remember(version)
            return VersionToken(version)

        except PropertyStoreError as e:
            self._cached_version = None
            fallback = self._new_token()
            logger.warning(f"Master version unavailable, using fallback {fallback}: {e}")
            return VersionToken(fallback, is_fallback=True)

    def current(self) -> str:
        """Return the current master version string (see ``resolve``)."""
        return self.resolve().value

    def bump(self) -> bool:
        """Replace the master version with a fresh token.

        Every key produced under the previous token becomes unreachable.

        Returns:
            True if the new token was stored, False otherwise
        """
        if not self._memo_is_fresh():
            self.resolve()

        new_version = self._new_token()
        try:
            self.property_store.write(MASTER_VERSION_KEY, new_version)
        except PropertyStoreError as e:
            self._cached_version = None
            logger.error(f"Failed to bump master cache version: {e}")
            return False

        previous = self._cached_version
        self._remember(new_version)
        logger.info(
            f"Master cache version bumped: {previous} -> {new_version}",
            extra={"master_version": new_version},
        )
        return True

    def forget(self) -> None:
        """Drop the memoised token so the next access reloads it from storage."""
        self._cached_version = None
