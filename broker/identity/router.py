"""Identity API router: sign-up, sign-in and the current-user probe."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request

from broker.api.contracts import ApiErrorResponse, LoginResponse, MeResponse, SignUpResponse
from broker.api.errors import ApiError, ApiErrorCode
from broker.handshake.completion import SessionCompletionService
from broker.identity.models import LoginRequest, SignUpRequest
from broker.identity.provider import InvalidCredentialError, LocalIdentityProvider
from broker.identity.rate_limiter import LoginRateLimiter

LOGGER = logging.getLogger(__name__)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from Authorization header."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def create_identity_router(
    *,
    provider: LocalIdentityProvider,
    rate_limiter: LoginRateLimiter,
    completion: SessionCompletionService,
) -> APIRouter:
    """Build identity router; sign-in can finish a pending handshake."""
    router = APIRouter(tags=["identity"])

    @router.post(
        "/auth/signup",
        response_model=SignUpResponse,
        status_code=201,
        responses={409: {"model": ApiErrorResponse}},
    )
    def sign_up(req: SignUpRequest) -> SignUpResponse:
        """Register an end user."""
        user = provider.sign_up(req.email, req.password, req.full_name)
        return SignUpResponse(user=user)

    @router.post(
        "/auth/login",
        response_model=LoginResponse,
        response_model_by_alias=True,
        responses={401: {"model": ApiErrorResponse}, 429: {"model": ApiErrorResponse}},
    )
    def login(req: LoginRequest, request: Request) -> LoginResponse:
        """Authenticate user; with ``session`` also return the tenant callback URL."""
        client_ip = (request.client.host if request.client else "") or "unknown"
        normalized_email = req.email.strip().lower()
        rate_limiter.assert_allowed(email=normalized_email, client_ip=client_ip)
        try:
            credential = provider.sign_in(req.email, req.password)
        except ApiError:
            rate_limiter.record_failure(email=normalized_email, client_ip=client_ip)
            raise
        rate_limiter.record_success(email=normalized_email, client_ip=client_ip)

        redirect_url = None
        if req.session:
            try:
                completed = completion.complete(req.session, credential.user.id)
            except ApiError as exc:
                if exc.status_code != 400:
                    raise
                LOGGER.warning(
                    "login_without_handshake",
                    extra={"user_id": credential.user.id, "reason": exc.error_code},
                )
            else:
                redirect_url = completion.build_redirect(completed, credential.user.id)

        return LoginResponse(**credential.model_dump(), redirect_url=redirect_url)

    @router.get(
        "/auth/me",
        response_model=MeResponse,
        responses={401: {"model": ApiErrorResponse}},
    )
    def me(authorization: str | None = Header(default=None)) -> MeResponse:
        """Return the identity behind the bearer credential."""
        token = extract_bearer_token(authorization)
        if not token:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
                message="Missing bearer token",
            )
        try:
            user = provider.verify_credential(token)
        except InvalidCredentialError as exc:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_TOKEN_INVALID,
                message="Invalid user token",
            ) from exc
        return MeResponse(user=user)

    return router
