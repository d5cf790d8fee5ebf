"""Broker configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class BrokerConfig:
    """Handshake-related configuration."""

    public_url: str
    service_name: str
    version: str
    default_session_ttl_minutes: int
    max_session_ttl_minutes: int


@dataclass(frozen=True)
class IdentityConfig:
    """Local identity provider configuration."""

    secret_key: str
    issuer: str
    access_token_ttl_seconds: int
    admin_email: str
    admin_password: str


@dataclass(frozen=True)
class StorageConfig:
    """Persistence collaborator configuration."""

    database_path: str
    sqlite_timeout_seconds: float
    mongo_uri: str
    mongo_db: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    login_rate_limit_max_attempts: int
    login_rate_limit_window_seconds: int
    login_rate_limit_lock_seconds: int


def _required(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    broker: BrokerConfig
    identity: IdentityConfig
    storage: StorageConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment.

        Raises ``ConfigError`` when a collaborator endpoint or credential is
        absent.
        """
        public_url = _required("BROKER_PUBLIC_URL").rstrip("/")
        secret_key = _required("AUTH_SECRET_KEY")
        database_path = _required("BROKER_DATABASE_PATH")

        default_ttl = _int_env("SESSION_DEFAULT_TTL_MINUTES", 30)
        max_ttl = _int_env("SESSION_MAX_TTL_MINUTES", 1440)
        if default_ttl <= 0 or max_ttl < default_ttl:
            raise ConfigError(
                "SESSION_DEFAULT_TTL_MINUTES must be positive and not exceed "
                "SESSION_MAX_TTL_MINUTES"
            )

        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
            if origin.strip()
        ]

        return AppConfig(
            broker=BrokerConfig(
                public_url=public_url,
                service_name=os.getenv("BROKER_SERVICE_NAME", "").strip()
                or "Tenant Auth Broker",
                version=os.getenv("BROKER_VERSION", "").strip() or "1.0.0",
                default_session_ttl_minutes=default_ttl,
                max_session_ttl_minutes=max_ttl,
            ),
            identity=IdentityConfig(
                secret_key=secret_key,
                issuer=os.getenv("AUTH_ISSUER", "").strip() or "auth-broker",
                access_token_ttl_seconds=_int_env(
                    "AUTH_ACCESS_TOKEN_TTL_SECONDS", 3600
                ),
                admin_email=os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower(),
                admin_password=os.getenv("AUTH_ADMIN_PASSWORD", "").strip(),
            ),
            storage=StorageConfig(
                database_path=database_path,
                sqlite_timeout_seconds=float(_int_env("SQLITE_TIMEOUT_SECONDS", 5)),
                mongo_uri=os.getenv("MONGODB_URI", "").strip(),
                mongo_db=os.getenv("MONGODB_DB", "").strip() or "auth_broker",
            ),
            logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=_int_env("REQUEST_MAX_BYTES", 1024 * 1024),
                login_rate_limit_max_attempts=_int_env(
                    "LOGIN_RATE_LIMIT_MAX_ATTEMPTS", 5
                ),
                login_rate_limit_window_seconds=_int_env(
                    "LOGIN_RATE_LIMIT_WINDOW_SECONDS", 300
                ),
                login_rate_limit_lock_seconds=_int_env(
                    "LOGIN_RATE_LIMIT_LOCK_SECONDS", 600
                ),
            ),
        )
