"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_PARAMETERS = "MISSING_PARAMETERS"
    INVALID_REDIRECT = "INVALID_REDIRECT"
    INVALID_SESSION_TOKEN = "INVALID_SESSION_TOKEN"
    APPLICATION_NOT_FOUND = "APPLICATION_NOT_FOUND"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    EMAIL_TAKEN = "EMAIL_TAKEN"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope.

    ``extra`` fields (``success``, ``authorized``, ``details``) are merged into
    the response body.
    """

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        **extra: Any,
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "error": message, **extra},
        )

    @property
    def error_code(self) -> str:
        return str(self.detail["error_code"])

    @property
    def message(self) -> str:
        return str(self.detail["error"])


def to_error_payload(detail: Any, status_code: int) -> dict[str, Any]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        payload = dict(detail)
        payload["error_code"] = str(detail.get("error_code") or f"HTTP_{status_code}")
        payload["error"] = str(
            detail.get("error") or detail.get("message") or detail.get("detail") or "HTTP error"
        )
        payload.pop("message", None)
        payload.pop("detail", None)
        return payload
    return {
        "error_code": f"HTTP_{status_code}",
        "error": str(detail or "HTTP error"),
    }


def internal_error(message: str, **extra: Any) -> ApiError:
    """Return a 500 error that hides collaborator details from the caller."""
    return ApiError(
        status_code=500,
        error_code=ApiErrorCode.INTERNAL_SERVER_ERROR,
        message=message,
        **extra,
    )
