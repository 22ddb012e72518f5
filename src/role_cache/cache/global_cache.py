"""Global, version-independent cache for the staff directory.

The staff directory is read on nearly every request and changes rarely. It is
kept under one fixed key in the global Redis namespace as zlib-compressed,
base64-encoded JSON, with its own TTL. Master version bumps and dependency
invalidation never touch it; it expires by TTL or is replaced by
``refresh()`` or ``store()``.
"""

import base64
import binascii
import logging
import zlib

from pydantic import ValidationError as PydanticValidationError

from ..constants import STAFF_SOURCE
from ..database.row_source import RowSource
from ..exceptions import CacheBackendError, CacheEntryDecodeError, DataSourceError
from ..users.staff import StaffDirectory, build_staff_directory
from .base_cache import BaseCache
from .change_detection import compute_data_hash

logger = logging.getLogger(__name__)

GLOBAL_STAFF_DATA_KEY = "global_staff_data_v2"
DEFAULT_GLOBAL_TTL_SECONDS = 3600


def encode_directory(directory: StaffDirectory) -> str:
    """Serialize a directory to the compressed blob format."""
    raw = directory.model_dump_json().encode("utf-8")
    return base64.b64encode(zlib.compress(raw)).decode("ascii")


def decode_directory(blob: str) -> StaffDirectory:
    """Parse a compressed blob back into a directory.

    Raises:
        CacheEntryDecodeError: If the blob is not valid base64, zlib or JSON
    """
    try:
        raw = zlib.decompress(base64.b64decode(blob, validate=True))
        return StaffDirectory.model_validate_json(raw)
    except (binascii.Error, zlib.error, PydanticValidationError, ValueError) as e:
        raise CacheEntryDecodeError(
            message="Global staff blob could not be decoded",
            details={"key": GLOBAL_STAFF_DATA_KEY},
            original_exception=e,
        ) from e


class GlobalResilientCache:
    """Read-through cache of the staff directory shared by all users."""

    def __init__(
        self,
        cache: BaseCache,
        row_source: RowSource,
        ttl_seconds: int = DEFAULT_GLOBAL_TTL_SECONDS,
        source_name: str = STAFF_SOURCE,
    ):
        """Initialize the global cache.

        Args:
            cache: BaseCache bound to the global namespace
            row_source: Authoritative source of the Staff rows
            ttl_seconds: Blob lifetime; not subject to the per-entry ceiling
            source_name: Name of the staff source
        """
        self.cache = cache
        self.row_source = row_source
        self.ttl_seconds = ttl_seconds
        self.source_name = source_name
        self.logger = logging.getLogger(self.__class__.__name__)

    def _load_cached(self) -> StaffDirectory | None:
        try:
            blob = self.cache.get_string(GLOBAL_STAFF_DATA_KEY)
        except CacheBackendError as e:
            self.logger.warning(f"Global cache unavailable: {e}")
            return None

        if blob is None:
            return None

        try:
            return decode_directory(blob)
        except CacheEntryDecodeError as e:
            self.logger.warning(f"Discarding corrupt global staff blob: {e}")
            return None

    def _load_from_source(self) -> StaffDirectory | None:
        try:
            rows = self.row_source.read_rows(self.source_name)
        except DataSourceError as e:
            self.logger.error(
                f"Cannot read {self.source_name} source: {e}", extra={"source_name": self.source_name}
            )
            return None

        if rows is None:
            self.logger.error(f"{self.source_name} source not found")
            return None

        return self.store(rows)

    def read(self) -> StaffDirectory | None:
        """Return the staff directory, reading through to the source on a miss.

        Returns:
            StaffDirectory, or None if neither the cache nor the source is usable
        """
        directory = self._load_cached()
        if directory is not None:
            self.logger.debug("Global staff cache HIT")
            return directory

        self.logger.debug("Global staff cache MISS")
        return self._load_from_source()

    def refresh(self) -> StaffDirectory | None:
        """Re-read the source and replace the cached blob unconditionally."""
        return self._load_from_source()

    def store(self, rows: list[list]) -> StaffDirectory:
        """Build the directory from already read Staff rows and cache it.

        Args:
            rows: Full Staff sheet including the header row

        Returns:
            The stored directory, also returned when the blob write fails
        """
        directory = build_staff_directory(rows, data_hash=compute_data_hash(rows[1:]))

        try:
            self.cache.set_string(GLOBAL_STAFF_DATA_KEY, encode_directory(directory), self.ttl_seconds)
        except CacheBackendError as e:
            self.logger.warning(
                f"Could not store global staff blob: {e}", extra={"source_name": self.source_name}
            )

        self.logger.info(
            f"Loaded {directory.row_count} staff records from {self.source_name}",
            extra={"source_name": self.source_name},
        )
        return directory

    def clear(self) -> bool:
        """Drop the cached blob."""
        try:
            return self.cache.delete(GLOBAL_STAFF_DATA_KEY)
        except CacheBackendError as e:
            self.logger.warning(f"Could not clear global staff blob: {e}")
            return False
