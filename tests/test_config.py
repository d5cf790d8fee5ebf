from __future__ import annotations

import pytest

from broker.core.config import AppConfig, ConfigError

_ENV_NAMES = (
    "BROKER_PUBLIC_URL",
    "AUTH_SECRET_KEY",
    "BROKER_DATABASE_PATH",
    "SESSION_DEFAULT_TTL_MINUTES",
    "SESSION_MAX_TTL_MINUTES",
    "MONGODB_URI",
    "MONGODB_DB",
    "CORS_ALLOWED_ORIGINS",
)


def _base_env(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BROKER_PUBLIC_URL", "https://auth.example.com/")
    monkeypatch.setenv("AUTH_SECRET_KEY", "secret")
    monkeypatch.setenv("BROKER_DATABASE_PATH", "/tmp/broker.db")


def test_from_env_applies_defaults(monkeypatch) -> None:
    _base_env(monkeypatch)
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com")

    config = AppConfig.from_env()

    assert config.broker.public_url == "https://auth.example.com"
    assert config.broker.default_session_ttl_minutes == 30
    assert config.broker.max_session_ttl_minutes == 1440
    assert config.storage.mongo_uri == ""
    assert config.storage.mongo_db == "auth_broker"
    assert config.security.cors_allowed_origins == [
        "https://a.example.com",
        "https://b.example.com",
    ]


@pytest.mark.parametrize("missing", ["BROKER_PUBLIC_URL", "AUTH_SECRET_KEY", "BROKER_DATABASE_PATH"])
def test_from_env_fails_when_required_setting_is_missing(monkeypatch, missing: str) -> None:
    _base_env(monkeypatch)
    monkeypatch.delenv(missing)

    with pytest.raises(ConfigError, match=missing):
        AppConfig.from_env()


def test_from_env_rejects_non_integer_ttl(monkeypatch) -> None:
    _base_env(monkeypatch)
    monkeypatch.setenv("SESSION_DEFAULT_TTL_MINUTES", "soon")

    with pytest.raises(ConfigError, match="SESSION_DEFAULT_TTL_MINUTES"):
        AppConfig.from_env()


def test_from_env_rejects_default_ttl_above_maximum(monkeypatch) -> None:
    _base_env(monkeypatch)
    monkeypatch.setenv("SESSION_DEFAULT_TTL_MINUTES", "60")
    monkeypatch.setenv("SESSION_MAX_TTL_MINUTES", "10")

    with pytest.raises(ConfigError):
        AppConfig.from_env()
