"""Pytest configuration and shared fixtures for the role cache tests.

TESTING STRATEGY:
=================

Unit tests (tests/unit/) exercise one component at a time; integration tests
(tests/integration/) run the full request flow through CacheManager and
UserService. Neither needs a running Redis or MongoDB:

- FakeRedis implements the handful of commands BaseCache issues (get, setex,
  delete, ping) with a controllable clock, so TTL expiry is tested
  by advancing time instead of sleeping
- FakePropertyStore and FakeRowSource implement the PropertyStore and
  RowSource protocols over dicts
- Failure injection uses the ``fail_*`` switches on the fakes, or MagicMock
  where a single call must misbehave

Fixture Design Principles:
--------------------------
1. Function scope everywhere: each test gets fresh fakes, no shared state
2. Components are wired the same way CacheManager wires them
3. Sample sheets mirror the real Staff / Settings layout
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.config.settings import Settings
from src.role_cache.cache.base_cache import GLOBAL_NAMESPACE, BaseCache
from src.role_cache.cache.cache_manager import CacheManager
from src.role_cache.cache.change_detection import SheetHashStore
from src.role_cache.cache.dependencies import (
    DEFAULT_CACHE_DEPENDENCIES,
    DependencyGraphInvalidator,
    build_dependency_map,
)
from src.role_cache.cache.global_cache import GlobalResilientCache
from src.role_cache.cache.key_generator import DigestKeyGenerator
from src.role_cache.cache.master_version import MasterVersionStore
from src.role_cache.cache.scoped_cache import ScopedCacheStore
from src.role_cache.exceptions import DataSourceError, PropertyStoreError
from src.role_cache.users.service import UserService
from src.role_cache.users.state_tracker import UserStateTracker

TEST_SALT = "unit-test-salt-0123456789abcdef"

# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Register custom markers.

    ```bash
    pytest -m unit              # Only unit tests
    pytest -m integration       # Only flow tests
    ```
    """
    config.addinivalue_line("markers", "unit: Fast unit tests with in-memory fakes")
    config.addinivalue_line("markers", "integration: Full request flow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory."""
    for item in items:
        test_path = Path(item.fspath)
        if "unit" in test_path.parts:
            item.add_marker(pytest.mark.unit)
        elif "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# FAKES
# =============================================================================


class FakeRedis:
    """In-memory stand-in for a ``decode_responses=True`` Redis client."""

    def __init__(self):
        self.store: dict[str, tuple[str, float]] = {}
        self.now = 0.0
        self.fail = False
        self.commands: list[tuple[str, str]] = []

    def _check(self, command: str, key: str = "") -> None:
        self.commands.append((command, key))
        if self.fail:
            raise RedisConnectionError("fake redis is down")

    def _live(self, key: str) -> str | None:
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self.now >= expires_at:
            del self.store[key]
            return None
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ping(self) -> bool:
        self._check("ping")
        return True

    def get(self, key: str) -> str | None:
        self._check("get", key)
        return self._live(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check("setex", key)
        self.store[key] = (value, self.now + ttl)
        return True

    def delete(self, key: str) -> int:
        self._check("delete", key)
        return 1 if self.store.pop(key, None) is not None else 0

    def ttl(self, key: str) -> int:
        item = self.store.get(key)
        if item is None:
            return -2
        return int(item[1] - self.now)

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return [key for key in self.store if key.startswith(prefix)]


class FakePropertyStore:
    """Dict-backed PropertyStore with failure switches."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes: list[str] = []

    def read(self, key: str) -> str | None:
        if self.fail_reads:
            raise PropertyStoreError(message="read failed", details={"key": key})
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise PropertyStoreError(message="write failed", details={"key": key})
        self.writes.append(key)
        self.data[key] = value

    def delete(self, key: str) -> None:
        if self.fail_writes:
            raise PropertyStoreError(message="delete failed", details={"key": key})
        self.data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        if self.fail_reads:
            raise PropertyStoreError(message="keys failed", details={"prefix": prefix})
        return [key for key in self.data if key.startswith(prefix)]


class FakeRowSource:
    """RowSource over a dict of sheets, counting reads per sheet."""

    def __init__(self, sheets: dict[str, list[list[Any]]]):
        self.sheets = sheets
        self.reads: dict[str, int] = {}
        self.fail = False

    def read_rows(self, source_name: str) -> list[list[Any]] | None:
        self.reads[source_name] = self.reads.get(source_name, 0) + 1
        if self.fail:
            raise DataSourceError(message="source down", details={"sheet": source_name})
        rows = self.sheets.get(source_name)
        return [list(row) for row in rows] if rows is not None else None


class MillisClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now


class DateTimeClock:
    """Controllable aware-datetime clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# SAMPLE DATA
# =============================================================================

STAFF_HEADER = ["Name", "Email", "Role", "Year", "Building", "Summative Year"]


def staff_rows() -> list[list[Any]]:
    return [
        STAFF_HEADER,
        ["Ada Lovelace", "ada@school.org", "Teacher", 1, "North", "yes"],
        ["Grace Hopper", "grace@school.org", "Administrator", "2", "South", ""],
        ["Bad Row", "not-an-email", "Nurse", 1, "", ""],
        ["Alan Turing", "ALAN@School.org", "Nurse", "P", "East", "no"],
    ]


def settings_rows() -> list[list[Any]]:
    return [
        ["Role", "Year 1", "Year 2", "Year 3"],
        ["Teacher", "1a, 1b", "1c", "1d, 1e"],
        ["", "2a", "2b", "2c"],
        ["", "3a", "3b, 3c", "3d"],
        ["", "4a", "4b", "4c, 4d"],
        ["", "", "", ""],
        ["Nurse", "1a", "1b", "1c"],
        ["", "2a", "2b", "2c"],
        ["", "3a", "3b", "3c"],
        ["", "4a", "4b", "4c"],
    ]


def role_sheet_rows(role: str) -> list[list[Any]]:
    return [["Domain", "Component", "Title"], ["1", "1a", f"{role} planning"]]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def test_salt() -> str:
    return TEST_SALT


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def property_store() -> FakePropertyStore:
    return FakePropertyStore()


@pytest.fixture
def sample_staff_rows() -> list[list[Any]]:
    return staff_rows()


@pytest.fixture
def sample_settings_rows() -> list[list[Any]]:
    return settings_rows()


@pytest.fixture
def row_source() -> FakeRowSource:
    return FakeRowSource(
        {
            "Staff": staff_rows(),
            "Settings": settings_rows(),
            "Teacher": role_sheet_rows("Teacher"),
            "Nurse": role_sheet_rows("Nurse"),
            "Administrator": role_sheet_rows("Administrator"),
        }
    )


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        cache_key_salt=TEST_SALT,
        cache_version="1.0.0",
        redis_enabled=False,
    )


@pytest.fixture
def millis_clock() -> MillisClock:
    return MillisClock()


@pytest.fixture
def datetime_clock() -> DateTimeClock:
    return DateTimeClock()


@pytest.fixture
def version_store(property_store, millis_clock) -> MasterVersionStore:
    return MasterVersionStore(property_store, static_version="1.0.0", clock=millis_clock)


@pytest.fixture
def key_generator(version_store) -> DigestKeyGenerator:
    return DigestKeyGenerator(version_store, salt=TEST_SALT)


@pytest.fixture
def root_cache(fake_redis) -> BaseCache:
    return BaseCache(fake_redis)


@pytest.fixture
def scoped_cache(root_cache, key_generator, version_store) -> ScopedCacheStore:
    return ScopedCacheStore(root_cache, key_generator, version_store, max_ttl_seconds=600)


@pytest.fixture
def invalidator(version_store, scoped_cache) -> DependencyGraphInvalidator:
    return DependencyGraphInvalidator(
        build_dependency_map(DEFAULT_CACHE_DEPENDENCIES), version_store, scoped_cache
    )


@pytest.fixture
def hash_store(property_store) -> SheetHashStore:
    return SheetHashStore(property_store)


@pytest.fixture
def global_cache(root_cache, row_source) -> GlobalResilientCache:
    return GlobalResilientCache(root_cache.child(GLOBAL_NAMESPACE), row_source, ttl_seconds=3600)


@pytest.fixture
def state_tracker(
    property_store, scoped_cache, invalidator, version_store, datetime_clock
) -> UserStateTracker:
    return UserStateTracker(
        property_store,
        scoped_cache,
        invalidator,
        version_store,
        history_limit=10,
        clock=datetime_clock,
    )


@pytest.fixture
def cache_manager(fake_redis, property_store, row_source, test_settings) -> CacheManager:
    return CacheManager(fake_redis, property_store, row_source, config=test_settings)


@pytest.fixture
def user_service(cache_manager, test_settings) -> UserService:
    return UserService(cache_manager, config=test_settings)
