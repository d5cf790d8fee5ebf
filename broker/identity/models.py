"""Pydantic models for the identity provider adapter."""

from __future__ import annotations

from pydantic import BaseModel, Field


class IdentityUserRecord(BaseModel):
    """Persisted identity user."""

    user_id: str
    email: str
    password_hash: str
    is_active: bool = True
    email_verified: bool = False
    created_at: int = 0


class IdentityUser(BaseModel):
    """Identity resolved from a credential or a sign-up."""

    id: str
    email: str
    email_verified: bool = False


class IdentityCredential(BaseModel):
    """Bearer credential issued on sign-in."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: IdentityUser


class SignUpRequest(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=8)
    full_name: str | None = None


class LoginRequest(BaseModel):
    """Login request payload, optionally continuing a handshake."""

    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    session: str | None = None
