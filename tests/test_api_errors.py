from __future__ import annotations

from broker.api.errors import ApiError, ApiErrorCode, internal_error, to_error_payload


def test_to_error_payload_preserves_structured_detail() -> None:
    payload = to_error_payload(
        {"error_code": "AUTH_TOKEN_INVALID", "message": "Invalid"},
        401,
    )

    assert payload == {"error_code": "AUTH_TOKEN_INVALID", "error": "Invalid"}


def test_to_error_payload_normalizes_plain_string() -> None:
    payload = to_error_payload("boom", 500)

    assert payload == {"error_code": "HTTP_500", "error": "boom"}


def test_api_error_carries_extra_flags() -> None:
    exc = ApiError(
        status_code=400,
        error_code=ApiErrorCode.INVALID_REDIRECT,
        message="Invalid redirect URL",
        success=False,
        details="not allowed",
    )

    assert exc.error_code == "INVALID_REDIRECT"
    assert exc.message == "Invalid redirect URL"
    assert to_error_payload(exc.detail, exc.status_code) == {
        "error_code": "INVALID_REDIRECT",
        "error": "Invalid redirect URL",
        "success": False,
        "details": "not allowed",
    }


def test_internal_error_is_500_with_generic_code() -> None:
    exc = internal_error("Failed to complete authentication session", success=False)

    assert exc.status_code == 500
    assert exc.error_code == "INTERNAL_SERVER_ERROR"
    assert exc.detail["success"] is False
