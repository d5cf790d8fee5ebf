"""Handshake API router: issuance, completion and verification."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from broker.api.contracts import (
    ApiErrorResponse,
    CompleteSessionRequest,
    CompleteSessionResponse,
    IssueSessionRequest,
    IssueSessionResponse,
    ServiceStatusResponse,
    VerifyRequest,
)
from broker.api.errors import ApiError
from broker.api.http_setup import ISSUANCE_CORS_HEADERS
from broker.core.config import BrokerConfig
from broker.handshake.completion import SessionCompletionService
from broker.handshake.issuance import SessionIssuanceService
from broker.handshake.verifier import AuthorizationVerifier
from broker.sessions.models import RequestMeta


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def request_meta(request: Request) -> RequestMeta:
    """Capture audit metadata from the inbound request."""
    forwarded = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded.split(",")[0].strip() if forwarded else ""
    if not client_ip and request.client:
        client_ip = request.client.host
    return RequestMeta(
        user_agent=request.headers.get("user-agent", ""),
        client_ip=client_ip,
    )


def create_handshake_router(
    *,
    issuance: SessionIssuanceService,
    completion: SessionCompletionService,
    verifier: AuthorizationVerifier,
    config: BrokerConfig,
) -> APIRouter:
    """Build the router exposing the cross-application handshake."""
    router = APIRouter(tags=["handshake"])

    @router.options("/auth/sessions")
    def issue_session_preflight() -> Response:
        """CORS preflight for tenant front-ends calling issuance directly."""
        return Response(status_code=200, headers=ISSUANCE_CORS_HEADERS)

    @router.post(
        "/auth/sessions",
        response_model=IssueSessionResponse,
        responses={400: {"model": ApiErrorResponse}, 500: {"model": ApiErrorResponse}},
    )
    def issue_session(req: IssueSessionRequest, request: Request, response: Response) -> IssueSessionResponse:
        """Create a single-use login session and return the login URL."""
        try:
            issued = issuance.issue(
                req.application_id,
                req.redirect_url,
                user_email=req.user_email,
                state=req.state,
                ttl_minutes=req.expires_in_minutes,
                meta=request_meta(request),
            )
        except ApiError as exc:
            exc.headers = {**(exc.headers or {}), **ISSUANCE_CORS_HEADERS}
            raise
        response.headers.update(ISSUANCE_CORS_HEADERS)
        return IssueSessionResponse(
            session_token=issued.token,
            auth_url=issued.login_url,
            expires_at=_isoformat(issued.expires_at),
        )

    @router.post(
        "/auth/sessions/complete",
        response_model=CompleteSessionResponse,
        responses={400: {"model": ApiErrorResponse}, 500: {"model": ApiErrorResponse}},
    )
    def complete_session(req: CompleteSessionRequest) -> CompleteSessionResponse:
        """Consume a session token; a second attempt gets the invalid-token error."""
        completed = completion.complete(req.session_token, req.user_id)
        return CompleteSessionResponse(
            redirect_url=completed.redirect_url,
            state=completed.state,
            application_id=completed.application_id,
            user_memberships=completed.user_memberships,
        )

    @router.post(
        "/auth/verify",
        responses={
            400: {"model": ApiErrorResponse},
            401: {"model": ApiErrorResponse},
            404: {"model": ApiErrorResponse},
            500: {"model": ApiErrorResponse},
        },
    )
    def verify(req: VerifyRequest) -> JSONResponse:
        """Check that a user may access an application, optionally at a tier."""
        result = verifier.verify(
            req.application_id,
            req.user_token,
            req.required_tier_level,
            include_all_memberships=req.include_memberships,
        )
        return JSONResponse(status_code=result.status_code, content=result.to_payload())

    @router.get("/auth/verify", response_model=ServiceStatusResponse)
    def service_status() -> ServiceStatusResponse:
        """Health probe used by tenant SDKs."""
        return ServiceStatusResponse(
            service=config.service_name,
            status="operational",
            version=config.version,
            timestamp=_isoformat(datetime.now(timezone.utc)),
        )

    return router
