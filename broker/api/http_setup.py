"""HTTP middleware and exception handler wiring for the broker app."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from broker.api.contracts import ApiErrorResponse
from broker.api.errors import ApiErrorCode, to_error_payload
from broker.core.config import AppConfig
from broker.core.logging import set_correlation_id


ISSUANCE_PATH = "/auth/sessions"
ISSUANCE_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class TenantCORSMiddleware(CORSMiddleware):
    """Credentialed CORS for broker pages; listed paths answer their own preflights."""

    def __init__(self, app: ASGIApp, *, exempt_paths: tuple[str, ...] = (), **kwargs: Any) -> None:
        super().__init__(app, **kwargs)
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.exempt_paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def register_cors_middleware(app: FastAPI, *, config: AppConfig) -> None:
    """Allow configured origins everywhere except the open issuance endpoint."""
    app.add_middleware(
        TenantCORSMiddleware,
        exempt_paths=(ISSUANCE_PATH,),
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )


def _error_body(payload: dict[str, Any]) -> dict[str, Any]:
    return ApiErrorResponse(**payload).model_dump(exclude_none=True)


def describe_validation_errors(exc: RequestValidationError) -> str:
    """Summarize field errors by location and message only."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def _contract_flags(path: str) -> dict[str, Any]:
    if path.startswith(ISSUANCE_PATH):
        return {"success": False}
    if path == "/auth/verify":
        return {"authorized": False}
    return {}


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach common security and observability middleware to an app."""

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > config.security.request_max_bytes:
                return JSONResponse(
                    status_code=413,
                    content=_error_body(
                        {
                            "error_code": ApiErrorCode.REQUEST_TOO_LARGE,
                            "error": (
                                "Request size exceeds configured limit "
                                f"({config.security.request_max_bytes} bytes)."
                            ),
                        }
                    ),
                )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        logger.info(
            "request_completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Attach API exception handlers that return stable error contracts."""

    @app.exception_handler(HTTPException)
    async def handle_http_exception(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(payload),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(
            "validation_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 422,
            },
        )
        path = request.url.path
        return JSONResponse(
            status_code=422,
            content=_error_body(
                {
                    "error_code": ApiErrorCode.VALIDATION_ERROR,
                    "error": describe_validation_errors(exc),
                    **_contract_flags(path),
                }
            ),
            headers=ISSUANCE_CORS_HEADERS if path == ISSUANCE_PATH else None,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception(
            "unexpected_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
            },
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(
                {
                    "error_code": ApiErrorCode.INTERNAL_SERVER_ERROR,
                    "error": "Internal server error",
                }
            ),
        )
