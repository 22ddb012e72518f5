"""Unit tests for MasterVersionStore."""

import pytest

from src.role_cache.cache.master_version import MASTER_VERSION_KEY, MasterVersionStore


@pytest.mark.unit
class TestCurrent:
    def test_creates_and_stores_token_on_first_access(self, version_store, property_store, millis_clock):
        version = version_store.current()

        assert version == f"1.0.0_{millis_clock.now}"
        assert property_store.data[MASTER_VERSION_KEY] == version

    def test_memoises_token(self, version_store, property_store):
        first = version_store.current()
        property_store.fail_reads = True

        assert version_store.current() == first

    def test_loads_existing_token(self, property_store, millis_clock):
        property_store.data[MASTER_VERSION_KEY] = "1.0.0_42"
        store = MasterVersionStore(property_store, clock=millis_clock)

        assert store.current() == "1.0.0_42"
        assert property_store.writes == []

    def test_storage_error_returns_unmemoised_fallback(self, property_store, millis_clock):
        property_store.fail_reads = True
        store = MasterVersionStore(property_store, clock=millis_clock)

        first = store.current()
        second = store.current()

        assert first.startswith("1.0.0_")
        assert first != second

        property_store.fail_reads = False
        property_store.data[MASTER_VERSION_KEY] = "1.0.0_7"
        assert store.current() == "1.0.0_7"

    def test_resolve_flags_fallback(self, property_store, millis_clock):
        store = MasterVersionStore(property_store, clock=millis_clock)
        assert store.resolve().is_fallback is False

        store.forget()
        property_store.fail_reads = True
        token = store.resolve()

        assert token.is_fallback is True
        assert token.value.startswith("1.0.0_")


@pytest.mark.unit
class TestBump:
    def test_bump_writes_new_token(self, version_store, property_store, millis_clock):
        before = version_store.current()
        millis_clock.now += 5

        assert version_store.bump() is True
        after = version_store.current()

        assert after != before
        assert after == f"1.0.0_{millis_clock.now}"
        assert property_store.data[MASTER_VERSION_KEY] == after

    def test_bumps_in_same_millisecond_are_distinct(self, version_store):
        seen = {version_store.current()}
        for _ in range(5):
            assert version_store.bump() is True
            seen.add(version_store.current())

        assert len(seen) == 6

    def test_bump_failure_returns_false_and_clears_memo(self, version_store, property_store):
        version_store.current()
        property_store.fail_writes = True

        assert version_store.bump() is False

        property_store.fail_writes = False
        property_store.data[MASTER_VERSION_KEY] = "1.0.0_99"
        assert version_store.current() == "1.0.0_99"

    def test_forget_reloads_from_storage(self, version_store, property_store):
        version_store.current()
        property_store.data[MASTER_VERSION_KEY] = "1.0.0_123"

        version_store.forget()

        assert version_store.current() == "1.0.0_123"


@pytest.mark.unit
class TestSharedStorage:
    def test_bump_by_other_store_visible_after_forget(self, property_store, millis_clock):
        reader = MasterVersionStore(property_store, clock=millis_clock)
        writer = MasterVersionStore(property_store, clock=millis_clock)
        before = reader.current()
        millis_clock.now += 10

        assert writer.bump() is True
        assert reader.current() == before

        reader.forget()
        assert reader.current() == writer.current()

    def test_memo_expires_after_max_age(self, property_store, millis_clock):
        reader = MasterVersionStore(property_store, clock=millis_clock, max_age_millis=1000)
        writer = MasterVersionStore(property_store, clock=millis_clock)
        before = reader.current()
        millis_clock.now += 10
        writer.bump()

        millis_clock.now += 500
        assert reader.current() == before

        millis_clock.now += 500
        assert reader.current() == writer.current()
        assert reader.current() != before

    def test_bump_in_same_millisecond_as_stored_token_is_newer(self, property_store, millis_clock):
        reader = MasterVersionStore(property_store, clock=millis_clock)
        writer = MasterVersionStore(property_store, clock=millis_clock)
        before = reader.current()

        assert writer.bump() is True

        reader.forget()
        assert reader.current() != before
        assert reader.current() == f"1.0.0_{millis_clock.now + 1}"
