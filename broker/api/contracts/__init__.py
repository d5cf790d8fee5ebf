"""Public API request and response contracts."""

from broker.api.contracts.models import (
    ApiErrorResponse,
    CompleteSessionRequest,
    CompleteSessionResponse,
    HealthResponse,
    IssueSessionRequest,
    IssueSessionResponse,
    LoginResponse,
    MeResponse,
    ServiceStatusResponse,
    SignUpResponse,
    SweepResponse,
    VerifyRequest,
)

__all__ = [
    "ApiErrorResponse",
    "CompleteSessionRequest",
    "CompleteSessionResponse",
    "HealthResponse",
    "IssueSessionRequest",
    "IssueSessionResponse",
    "LoginResponse",
    "MeResponse",
    "ServiceStatusResponse",
    "SignUpResponse",
    "SweepResponse",
    "VerifyRequest",
]
