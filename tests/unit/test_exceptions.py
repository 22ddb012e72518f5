"""Unit tests for the exception hierarchy.

Test Coverage:
--------------
1. Exception instantiation and attributes
2. Inheritance hierarchy (callers catch by family)
3. Serialization (to_dict) and string representations
4. Conversion of library errors
"""

import pymongo.errors
import pytest
import redis.exceptions
from pydantic import BaseModel

from src.role_cache.exceptions import (
    CacheBackendError,
    CacheEntryDecodeError,
    CacheError,
    ConfigurationError,
    DataSourceError,
    DependencyGraphError,
    PropertyStoreError,
    RoleCacheError,
    convert_to_cache_exception,
)

# =============================================================================
# BASE EXCEPTION TESTS
# =============================================================================


@pytest.mark.unit
class TestRoleCacheError:
    def test_basic_instantiation(self):
        error = RoleCacheError(message="Test error", error_code="TEST_ERROR")

        assert error.message == "Test error"
        assert error.error_code == "TEST_ERROR"
        assert error.details == {}
        assert isinstance(error.timestamp, str)
        assert isinstance(error.request_id, str)

    def test_request_ids_unique(self):
        first = RoleCacheError(message="a", error_code="X")
        second = RoleCacheError(message="a", error_code="X")

        assert first.request_id != second.request_id

    def test_string_representation(self):
        error = CacheBackendError(
            message="Redis get failed",
            details={"key": "user:abc:k"},
            original_exception=redis.exceptions.ConnectionError("refused"),
        )

        text = str(error)
        assert text.startswith("[CACHE_BACKEND_UNAVAILABLE] Redis get failed")
        assert "user:abc:k" in text
        assert "Caused by: ConnectionError: refused" in text

    def test_repr_representation(self):
        error = PropertyStoreError(message="write failed")

        assert repr(error).startswith("PropertyStoreError(error_code='PROPERTY_STORE_ERROR'")

    def test_to_dict(self):
        error = DataSourceError(message="source down", details={"sheet": "Staff"})

        data = error.to_dict()

        assert data["error"] == "source down"
        assert data["error_code"] == "DATA_SOURCE_ERROR"
        assert data["details"] == {"sheet": "Staff"}
        assert "original_error" not in data

    def test_to_dict_with_original_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError as e:
            error = CacheEntryDecodeError(message="blob unreadable", original_exception=e)

        original = error.to_dict()["original_error"]
        assert original["type"] == "ValueError"
        assert original["message"] == "bad value"
        assert original["traceback"]

    def test_frozen(self):
        error = CacheError(message="x")

        with pytest.raises(AttributeError):
            error.message = "y"

    def test_can_be_raised_and_caught(self):
        with pytest.raises(RoleCacheError) as exc_info:
            raise DependencyGraphError(message="cycle", details={"cycle": ["a", "b", "a"]})

        assert exc_info.value.details["cycle"] == ["a", "b", "a"]


# =============================================================================
# HIERARCHY TESTS
# =============================================================================


@pytest.mark.unit
class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exception_class, parent, error_code",
        [
            (CacheBackendError, CacheError, "CACHE_BACKEND_UNAVAILABLE"),
            (CacheEntryDecodeError, CacheError, "CACHE_ENTRY_MALFORMED"),
            (DependencyGraphError, ConfigurationError, "DEPENDENCY_GRAPH_INVALID"),
            (PropertyStoreError, RoleCacheError, "PROPERTY_STORE_ERROR"),
            (DataSourceError, RoleCacheError, "DATA_SOURCE_ERROR"),
        ],
    )
    def test_parent_and_default_code(self, exception_class, parent, error_code):
        error = exception_class(message="test")

        assert isinstance(error, parent)
        assert isinstance(error, RoleCacheError)
        assert isinstance(error, Exception)
        assert error.error_code == error_code

    def test_cache_errors_not_persistence_errors(self):
        assert not isinstance(CacheBackendError(message="x"), PropertyStoreError)


# =============================================================================
# CONVERSION TESTS
# =============================================================================


class _Entry(BaseModel):
    version: str


@pytest.mark.unit
class TestExceptionConversion:
    def test_role_cache_error_returned_unchanged(self):
        error = PropertyStoreError(message="x")

        assert convert_to_cache_exception(error) is error

    def test_redis_error(self):
        converted = convert_to_cache_exception(
            redis.exceptions.TimeoutError("timed out"), context={"key": "k"}
        )

        assert isinstance(converted, CacheBackendError)
        assert converted.details["key"] == "k"
        assert isinstance(converted.original_exception, redis.exceptions.TimeoutError)

    def test_pymongo_error(self):
        converted = convert_to_cache_exception(pymongo.errors.ServerSelectionTimeoutError("no server"))

        assert isinstance(converted, PropertyStoreError)

    def test_pydantic_error(self):
        with pytest.raises(Exception) as exc_info:
            _Entry.model_validate({})

        converted = convert_to_cache_exception(exc_info.value)

        assert isinstance(converted, CacheEntryDecodeError)
        assert "validation_errors" in converted.details

    def test_generic_exception(self):
        converted = convert_to_cache_exception(KeyError("missing"), default_message="Lookup failed")

        assert type(converted) is RoleCacheError
        assert converted.error_code == "INTERNAL_ERROR"
        assert converted.message == "Lookup failed"
        assert converted.details["error_type"] == "KeyError"
