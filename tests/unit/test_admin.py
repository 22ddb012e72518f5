"""Unit tests for the admin CLI commands."""

import sys

import pytest

from src.role_cache import admin


@pytest.fixture
def installed_manager(cache_manager, monkeypatch):
    monkeypatch.setattr(admin, "get_cache_manager", lambda: cache_manager)
    monkeypatch.setattr(admin, "configure_logging", lambda *args, **kwargs: None)
    return cache_manager


@pytest.mark.unit
class TestCommands:
    def test_bump_version(self, installed_manager):
        before = installed_manager.current_version()

        assert admin.bump_version() is True
        assert installed_manager.current_version() != before

    def test_force_clean(self, installed_manager):
        assert admin.force_clean() is True

    def test_status(self, installed_manager):
        assert admin.show_status() is True

    def test_history(self, installed_manager):
        assert admin.show_history("ada@school.org") is True


@pytest.mark.unit
class TestMain:
    def test_no_flags_prints_help(self, installed_manager, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["role-cache-admin"])

        with pytest.raises(SystemExit) as exc_info:
            admin.main()

        assert exc_info.value.code == 1

    def test_bump_flag(self, installed_manager, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["role-cache-admin", "--bump-version", "--status"])

        with pytest.raises(SystemExit) as exc_info:
            admin.main()

        assert exc_info.value.code == 0
