from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from broker.admin.router import create_admin_router
from broker.api.contracts import HealthResponse
from broker.api.http_setup import (
    register_cors_middleware,
    register_exception_handlers,
    register_http_middleware,
)
from broker.core.config import AppConfig, StorageConfig
from broker.core.logging import setup_logging
from broker.handshake.completion import SessionCompletionService
from broker.handshake.issuance import SessionIssuanceService
from broker.handshake.redirects import RedirectValidator
from broker.handshake.router import create_handshake_router
from broker.handshake.verifier import AuthorizationVerifier
from broker.identity.provider import LocalIdentityProvider
from broker.identity.rate_limiter import LoginRateLimiter
from broker.identity.repository import IdentityRepository
from broker.identity.router import create_identity_router
from broker.sessions.store import MongoSessionStore, SQLiteSessionStore
from broker.tenancy.repository import TenancyRepository

LOGGER = logging.getLogger(__name__)


def build_session_store(storage: StorageConfig) -> SQLiteSessionStore | MongoSessionStore:
    """Use MongoDB for sessions when configured, else the broker SQLite file."""
    if storage.mongo_uri:
        return MongoSessionStore.from_uri(storage.mongo_uri, storage.mongo_db)
    return SQLiteSessionStore(
        Path(storage.database_path),
        timeout_seconds=storage.sqlite_timeout_seconds,
    )


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the broker app; a missing collaborator setting aborts startup."""
    if config is None:
        load_dotenv()
        config = AppConfig.from_env()
    setup_logging(config.logging.level, service_name=config.broker.service_name)

    app = FastAPI(title=config.broker.service_name, version=config.broker.version)
    register_cors_middleware(app, config=config)
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    database_path = Path(config.storage.database_path)
    timeout_seconds = config.storage.sqlite_timeout_seconds
    tenancy = TenancyRepository(database_path, timeout_seconds=timeout_seconds)
    identity_repo = IdentityRepository(database_path, timeout_seconds=timeout_seconds)
    store = build_session_store(config.storage)

    provider = LocalIdentityProvider(identity_repo, tenancy, config.identity)
    provider.bootstrap_admin_user()
    rate_limiter = LoginRateLimiter(
        database_path=database_path,
        max_attempts=config.security.login_rate_limit_max_attempts,
        window_seconds=config.security.login_rate_limit_window_seconds,
        lock_seconds=config.security.login_rate_limit_lock_seconds,
    )

    issuance = SessionIssuanceService(
        store=store,
        validator=RedirectValidator(tenancy, LOGGER),
        config=config.broker,
        logger=LOGGER,
    )
    completion = SessionCompletionService(store=store, memberships=tenancy, logger=LOGGER)
    verifier = AuthorizationVerifier(tenancy=tenancy, identity=provider, logger=LOGGER)

    app.include_router(
        create_handshake_router(
            issuance=issuance,
            completion=completion,
            verifier=verifier,
            config=config.broker,
        )
    )
    app.include_router(
        create_identity_router(
            provider=provider,
            rate_limiter=rate_limiter,
            completion=completion,
        )
    )
    app.include_router(create_admin_router(provider=provider, tenancy=tenancy, store=store))

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.on_event("shutdown")
    def close_resources() -> None:
        store.close()
        rate_limiter.close()
        identity_repo.close()
        tenancy.close()

    app.state.tenancy = tenancy
    app.state.session_store = store
    app.state.identity_provider = provider
    return app
