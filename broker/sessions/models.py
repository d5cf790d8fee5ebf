"""Pydantic models for cross-application auth sessions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class RequestMeta(BaseModel):
    """Audit metadata captured from the issuing request."""

    user_agent: str = ""
    client_ip: str = ""


class AuthSessionRecord(BaseModel):
    """Single-use login handshake record."""

    token: str
    application_id: str
    redirect_url: str
    user_email: str | None = None
    state: Any = None
    created_at: int
    expires_at: int
    consumed_at: int | None = None
    consumed_by: str | None = None
    user_agent: str = ""
    client_ip: str = ""
