"""Session issuance: the first leg of the cross-application handshake."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

from broker.api.errors import ApiError, ApiErrorCode, internal_error
from broker.core.config import BrokerConfig
from broker.core.security import generate_session_token
from broker.handshake.models import IssuedSession
from broker.handshake.redirects import RedirectValidator, check_url_length
from broker.sessions.models import AuthSessionRecord, RequestMeta
from broker.sessions.store import (
    BACKEND_ERRORS,
    SessionStoreProtocol,
    TokenCollisionError,
)

MAX_TOKEN_ATTEMPTS = 3

# Callers see one reason for unknown and inactive applications; the audit row keeps the precise one.
UNAVAILABLE_APPLICATION_REASONS = frozenset({"application_not_found", "application_inactive"})


class SessionIssuanceService:
    """Create single-use login sessions for allow-listed redirects."""

    def __init__(
        self,
        *,
        store: SessionStoreProtocol,
        validator: RedirectValidator,
        config: BrokerConfig,
        logger: logging.Logger,
    ) -> None:
        self._store = store
        self._validator = validator
        self._config = config
        self._logger = logger

    def resolve_ttl(self, ttl_minutes: int | None) -> int:
        """Return lifetime in minutes; explicit values must lie in 1..max."""
        if ttl_minutes is None:
            return self._config.default_session_ttl_minutes
        if ttl_minutes <= 0 or ttl_minutes > self._config.max_session_ttl_minutes:
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.VALIDATION_ERROR,
                message=(
                    "expiresInMinutes must be between 1 and "
                    f"{self._config.max_session_ttl_minutes}"
                ),
                success=False,
            )
        return ttl_minutes

    def issue(
        self,
        application_id: str | None,
        redirect_url: str | None,
        *,
        user_email: str | None = None,
        state: Any = None,
        ttl_minutes: int | None = None,
        meta: RequestMeta | None = None,
    ) -> IssuedSession:
        """Validate the redirect, persist a session and return its login URL."""
        if not application_id or not redirect_url:
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.MISSING_PARAMETERS,
                message="Missing required parameters: applicationId and redirectUrl",
                success=False,
            )
        ttl = self.resolve_ttl(ttl_minutes)
        check_url_length(
            self._logger, "Incoming redirectUrl", redirect_url, application_id=application_id
        )

        try:
            decision = self._validator.validate(application_id, redirect_url)
        except BACKEND_ERRORS as exc:
            self._logger.exception(
                "redirect_validation_failed", extra={"application_id": application_id}
            )
            raise internal_error(
                "Failed to create authentication session", success=False
            ) from exc
        if not decision.ok:
            reason = decision.reason
            if reason in UNAVAILABLE_APPLICATION_REASONS:
                reason = "application_unavailable"
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.INVALID_REDIRECT,
                message="Invalid redirect URL",
                success=False,
                details=(
                    f"Redirect URL {redirect_url!r} is not allowed for application "
                    f"{application_id} ({reason}). Ask the broker operator "
                    "to add it to the application's redirect allow-list."
                ),
            )

        request_meta = meta or RequestMeta()
        now = int(time.time())
        record: AuthSessionRecord | None = None
        try:
            for _ in range(MAX_TOKEN_ATTEMPTS):
                candidate = AuthSessionRecord(
                    token=generate_session_token(),
                    application_id=application_id,
                    redirect_url=redirect_url,
                    user_email=(user_email or "").strip() or None,
                    state=state,
                    created_at=now,
                    expires_at=now + ttl * 60,
                    user_agent=request_meta.user_agent,
                    client_ip=request_meta.client_ip,
                )
                try:
                    self._store.create(candidate)
                except TokenCollisionError:
                    self._logger.warning(
                        "session_token_collision", extra={"application_id": application_id}
                    )
                    continue
                record = candidate
                break
        except BACKEND_ERRORS as exc:
            self._logger.exception(
                "auth_session_create_failed", extra={"application_id": application_id}
            )
            raise internal_error(
                "Failed to create authentication session", success=False
            ) from exc
        if record is None:
            raise internal_error("Failed to create authentication session", success=False)

        login_url = f"{self._config.public_url}/auth/login?{urlencode({'session': record.token})}"
        self._logger.info(
            "auth_session_issued",
            extra={
                "application_id": application_id,
                "token_length": len(record.token),
                "redirect_length": len(redirect_url),
                "auth_url_length": len(login_url),
                "state_length": len(json.dumps(state)) if state is not None else 0,
            },
        )
        check_url_length(self._logger, "Generated authUrl", login_url, application_id=application_id)

        return IssuedSession(
            token=record.token,
            login_url=login_url,
            expires_at=datetime.fromtimestamp(record.expires_at, tz=timezone.utc),
        )
