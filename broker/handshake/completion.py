"""Session completion: exactly-once consumption of a handshake token."""

from __future__ import annotations

import json
import logging
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from broker.api.errors import ApiError, ApiErrorCode, internal_error
from broker.handshake.memberships import summarize_membership
from broker.handshake.models import CompletedSession
from broker.handshake.redirects import check_url_length
from broker.sessions.store import BACKEND_ERRORS, SessionStoreProtocol
from broker.tenancy.models import MembershipDetails

INVALID_TOKEN_MESSAGE = "Invalid or expired session token"


class MembershipSourceProtocol(Protocol):
    def list_memberships_for_user(self, user_id: str) -> list[MembershipDetails]:
        """Return the user's memberships across every application."""


class SessionCompletionService:
    """Consume a session token and release its redirect, state and memberships.

    Consumption happens before memberships are gathered and is not rolled
    back; a gathering failure leaves the token spent.
    """

    def __init__(
        self,
        *,
        store: SessionStoreProtocol,
        memberships: MembershipSourceProtocol,
        logger: logging.Logger,
    ) -> None:
        self._store = store
        self._memberships = memberships
        self._logger = logger

    def complete(self, token: str | None, user_id: str | None) -> CompletedSession:
        """Consume ``token`` for ``user_id``; a token never completes twice."""
        if not token or not user_id:
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.MISSING_PARAMETERS,
                message="Missing required parameters: sessionToken and userId",
                success=False,
            )

        try:
            record = self._store.consume(token, user_id=user_id)
        except BACKEND_ERRORS as exc:
            self._logger.exception("auth_session_consume_failed", extra={"user_id": user_id})
            raise internal_error(
                "Failed to complete authentication session", success=False
            ) from exc

        if record is None:
            self._logger.warning(
                "auth_session_rejected",
                extra={"user_id": user_id, "token_length": len(token)},
            )
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.INVALID_SESSION_TOKEN,
                message=INVALID_TOKEN_MESSAGE,
                success=False,
            )

        try:
            memberships = [
                summarize_membership(details)
                for details in self._memberships.list_memberships_for_user(user_id)
            ]
        except BACKEND_ERRORS as exc:
            self._logger.exception(
                "membership_gathering_failed",
                extra={"application_id": record.application_id, "user_id": user_id},
            )
            raise internal_error(
                "Failed to complete authentication session", success=False
            ) from exc

        self._logger.info(
            "auth_session_completed",
            extra={
                "application_id": record.application_id,
                "user_id": user_id,
                "redirect_length": len(record.redirect_url),
                "state_length": len(json.dumps(record.state)) if record.state is not None else 0,
            },
        )
        check_url_length(
            self._logger,
            "Retrieved redirectUrl",
            record.redirect_url,
            application_id=record.application_id,
        )
        return CompletedSession(
            application_id=record.application_id,
            redirect_url=record.redirect_url,
            state=record.state,
            user_memberships=memberships,
        )

    def build_redirect(self, completed: CompletedSession, user_id: str) -> str:
        """Return the tenant callback URL carrying the handshake outcome."""
        parts = urlsplit(completed.redirect_url)
        query = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key not in {"auth_success", "user_id", "state"}
        ]
        query.append(("auth_success", "true"))
        query.append(("user_id", user_id))
        if completed.state is not None:
            query.append(("state", json.dumps(completed.state, separators=(",", ":"))))
        final_url = urlunsplit(parts._replace(query=urlencode(query)))
        check_url_length(
            self._logger,
            "Final redirectUrl",
            final_url,
            application_id=completed.application_id,
        )
        return final_url
