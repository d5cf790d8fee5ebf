"""Operator endpoints guarded by the admin role."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header

from broker.api.contracts import ApiErrorResponse, SweepResponse
from broker.api.errors import ApiError, ApiErrorCode, internal_error
from broker.identity.provider import InvalidCredentialError, LocalIdentityProvider
from broker.identity.router import extract_bearer_token
from broker.sessions.store import BACKEND_ERRORS, SessionStoreProtocol
from broker.tenancy.repository import TenancyRepository

LOGGER = logging.getLogger(__name__)


def create_admin_router(
    *,
    provider: LocalIdentityProvider,
    tenancy: TenancyRepository,
    store: SessionStoreProtocol,
) -> APIRouter:
    """Build admin router; callers must hold the admin role on their profile."""
    router = APIRouter(tags=["admin"])

    def require_admin(authorization: str | None = Header(default=None)) -> str:
        token = extract_bearer_token(authorization)
        if not token:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
                message="Unauthorized",
            )
        try:
            user = provider.verify_credential(token)
        except InvalidCredentialError as exc:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_INVALID,
                message="Unauthorized",
            ) from exc
        if not tenancy.is_admin(user.id):
            raise ApiError(
                status_code=403,
                error_code=ApiErrorCode.AUTH_FORBIDDEN,
                message="Forbidden - Admin access required",
            )
        return user.id

    @router.post(
        "/admin/auth-sessions/sweep",
        response_model=SweepResponse,
        responses={
            401: {"model": ApiErrorResponse},
            403: {"model": ApiErrorResponse},
        },
    )
    def sweep_expired_sessions(admin_id: str = Depends(require_admin)) -> SweepResponse:
        """Delete auth sessions past expiry."""
        try:
            deleted = store.sweep_expired()
        except BACKEND_ERRORS as exc:
            LOGGER.exception("auth_session_sweep_failed")
            raise internal_error("Failed to sweep expired sessions") from exc
        tenancy.record_audit(
            table_name="auth_sessions",
            record_id="*",
            action="sweep_expired",
            new_values={"deleted": deleted},
            user_id=admin_id,
        )
        LOGGER.info("auth_sessions_swept", extra={"deleted": deleted, "user_id": admin_id})
        return SweepResponse(deleted=deleted)

    return router
