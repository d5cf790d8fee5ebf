"""Pydantic request/response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from broker.handshake.models import ApplicationMembershipSummary, CamelModel
from broker.identity.models import IdentityUser


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    error: str = Field(description="Human-readable error message")
    success: bool | None = Field(default=None, description="Set by handshake endpoints")
    authorized: bool | None = Field(default=None, description="Set by verification endpoints")
    details: str | None = Field(default=None, description="Remediation hint for the caller")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class ServiceStatusResponse(BaseModel):
    """Auth service probe payload used by tenant SDKs."""

    service: str
    status: Literal["operational"]
    version: str
    timestamp: str


class IssueSessionRequest(CamelModel):
    """Body of ``POST /auth/sessions``; presence is checked by the service."""

    application_id: str | None = None
    redirect_url: str | None = None
    user_email: str | None = None
    state: Any = None
    expires_in_minutes: int | None = None


class IssueSessionResponse(CamelModel):
    success: Literal[True] = True
    session_token: str
    auth_url: str
    expires_at: str


class CompleteSessionRequest(CamelModel):
    session_token: str | None = None
    user_id: str | None = None


class CompleteSessionResponse(CamelModel):
    success: Literal[True] = True
    redirect_url: str
    state: Any = None
    application_id: str
    user_memberships: list[ApplicationMembershipSummary]


class VerifyRequest(BaseModel):
    """Body of ``POST /auth/verify``."""

    application_id: str | None = None
    user_token: str | None = None
    required_tier_level: int | None = None
    include_memberships: bool = False


class SignUpResponse(BaseModel):
    user: IdentityUser


class LoginResponse(BaseModel):
    """Bearer credential, plus the tenant callback when a handshake was pending."""

    access_token: str
    token_type: str
    expires_in: int
    user: IdentityUser
    redirect_url: str | None = Field(default=None, serialization_alias="redirectUrl")


class MeResponse(BaseModel):
    user: IdentityUser


class SweepResponse(BaseModel):
    deleted: int
