"""Tests for Settings validation and get_settings caching."""

import pytest
from pydantic import ValidationError

from flowengine.core.config import Settings, get_settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.picker_default_strategy == "best"
    assert settings.redis_enabled is False
    assert settings.background_default_timeout is None


def test_async_driver_required() -> None:
    with pytest.raises(ValidationError, match="async driver"):
        Settings(_env_file=None, database_url="postgresql://u:p@localhost/db")
    Settings(_env_file=None, database_url="sqlite+aiosqlite:///flows.db")


def test_unknown_strategy_rejected() -> None:
    with pytest.raises(ValidationError, match="picker_default_strategy"):
        Settings(_env_file=None, picker_default_strategy="random")


def test_negative_timeout_rejected() -> None:
    with pytest.raises(ValidationError, match="background_default_timeout"):
        Settings(_env_file=None, background_default_timeout=-1)


def test_get_settings_reads_env_once(monkeypatch) -> None:
    monkeypatch.setenv("PICKER_DEFAULT_STRATEGY", "first")
    first = get_settings()
    monkeypatch.setenv("PICKER_DEFAULT_STRATEGY", "best")
    assert get_settings() is first
    assert first.picker_default_strategy == "first"
    get_settings.cache_clear()
    assert get_settings().picker_default_strategy == "best"
