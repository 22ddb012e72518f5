"""Exception hierarchy for the role-aware cache subsystem.

Design:
-------
All errors raised by internal adapters (Redis namespaces, the MongoDB property
store, the row source, dependency-map validation) inherit from RoleCacheError.
Public entry points (CacheManager, UserService) catch these, log them and fail
open: a cache failure degrades to a miss or a "changed" answer and never
blocks the read path it is optimizing.

Each exception carries structured metadata:
- error_code: machine-readable identifier (e.g., "CACHE_BACKEND_UNAVAILABLE")
- message: human-readable description
- details: additional context (key, source name, email, ...)
- timestamp / request_id: for correlating log lines
- original_exception: the underlying library error

Usage Example:
--------------
```python
try:
    raw = self.redis_client.get(key)
except RedisError as e:
    raise CacheBackendError(
        message="Redis get failed",
        details={"key": key},
        original_exception=e,
    ) from e
```
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

# =============================================================================
# BASE EXCEPTION CLASS
# =============================================================================


@dataclass(frozen=True)
class RoleCacheError(Exception):
    """Base exception for all role cache errors.

    Attributes:
    -----------
    message : str
        Human-readable error description for developers and logs
    error_code : str
        Machine-readable error identifier
    details : dict
        Additional context about the error
    timestamp : str
        ISO 8601 timestamp when error occurred
    request_id : str
        Unique identifier for this operation
    original_exception : Optional[Exception]
        The underlying exception that caused this error
    """

    message: str
    error_code: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    request_id: str = field(default_factory=lambda: str(uuid4()))
    original_exception: Exception | None = None

    def __str__(self) -> str:
        """Human-readable error representation for logs."""
        error_msg = f"[{self.error_code}] {self.message}"
        if self.details:
            error_msg += f" | Details: {self.details}"
        if self.original_exception:
            error_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: {self.original_exception}"
            )
        return error_msg

    def __repr__(self) -> str:
        """Developer-friendly representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"error_code='{self.error_code}', "
            f"message='{self.message}', "
            f"request_id='{self.request_id}', "
            f"timestamp='{self.timestamp}'"
            f")"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging.

        Returns:
        --------
        dict with keys: error, error_code, details, timestamp, request_id
        """
        error_dict = {
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
            "timestamp": self.timestamp,
            "request_id": self.request_id,
        }

        if self.original_exception:
            error_dict["original_error"] = {
                "type": type(self.original_exception).__name__,
                "message": str(self.original_exception),
                "traceback": traceback.format_exception(
                    type(self.original_exception),
                    self.original_exception,
                    self.original_exception.__traceback__,
                ),
            }

        return error_dict


# =============================================================================
# CACHE EXCEPTIONS
# =============================================================================
# Transient infrastructure errors: callers treat all of these as a miss.


@dataclass(frozen=True)
class CacheError(RoleCacheError):
    """Base class for ephemeral cache failures."""

    error_code: str = "CACHE_ERROR"


@dataclass(frozen=True)
class CacheBackendError(CacheError):
    """Redis unavailable, timed out or rejected the command.

    Recovery Strategy:
    ------------------
    - Treat as cache miss and read through to the source
    - Do NOT retry inside the request
    """

    error_code: str = "CACHE_BACKEND_UNAVAILABLE"


@dataclass(frozen=True)
class CacheEntryDecodeError(CacheError):
    """Cached payload is not a valid CacheEntry or compressed blob.

    Example:
    --------
    >>> raise CacheEntryDecodeError(
    ...     message="Cached entry has wrong shape",
    ...     details={"key": "user_abc", "missing": ["version"]},
    ... )
    """

    error_code: str = "CACHE_ENTRY_MALFORMED"


# =============================================================================
# PERSISTENCE EXCEPTIONS
# =============================================================================


@dataclass(frozen=True)
class PropertyStoreError(RoleCacheError):
    """Durable property store read/write failure.

    Use Case:
    ---------
    - MongoDB unreachable or server selection timed out
    - Write rejected
    - Stored JSON value cannot be decoded
    """

    error_code: str = "PROPERTY_STORE_ERROR"


@dataclass(frozen=True)
class DataSourceError(RoleCacheError):
    """Row source (sheet snapshot) could not be read."""

    error_code: str = "DATA_SOURCE_ERROR"


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================


@dataclass(frozen=True)
class ConfigurationError(RoleCacheError):
    """Configuration or initialization errors.

    Design Note:
    ------------
    Startup-time configuration errors (an invalid dependency map) should fail
    fast. Missing optional configuration (salt) degrades instead.
    """

    error_code: str = "CONFIGURATION_ERROR"


@dataclass(frozen=True)
class DependencyGraphError(ConfigurationError):
    """Dependency map references an unknown family or contains a cycle.

    Example:
    --------
    >>> raise DependencyGraphError(
    ...     message="Cache dependency cycle detected",
    ...     details={"cycle": ["user*", "role_sheet*", "user*"]},
    ... )
    """

    error_code: str = "DEPENDENCY_GRAPH_INVALID"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def convert_to_cache_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    context: dict[str, Any] | None = None,
) -> RoleCacheError:
    """Convert any exception to an appropriate role cache exception.

    Args:
    -----
    exception : Exception
        The original exception to convert
    default_message : str
        Fallback message if exception type is unknown
    context : dict, optional
        Additional context to include in error details

    Returns:
    --------
    RoleCacheError or subclass
    """
    import pydantic
    import pymongo.errors
    import redis.exceptions

    context = context or {}

    if isinstance(exception, RoleCacheError):
        return exception

    if isinstance(exception, redis.exceptions.RedisError):
        return CacheBackendError(
            message="Redis operation failed",
            details={**context, "error": str(exception)},
            original_exception=exception,
        )

    if isinstance(exception, pymongo.errors.PyMongoError):
        return PropertyStoreError(
            message="Property store operation failed",
            details={**context, "error": str(exception)},
            original_exception=exception,
        )

    if isinstance(exception, pydantic.ValidationError):
        return CacheEntryDecodeError(
            message="Cached payload failed validation",
            details={**context, "validation_errors": str(exception)},
            original_exception=exception,
        )

    return RoleCacheError(
        message=default_message,
        error_code="INTERNAL_ERROR",
        details={**context, "error_type": type(exception).__name__, "error": str(exception)},
        original_exception=exception,
    )
