"""Local identity provider: password sign-up/sign-in and bearer credentials."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Protocol

from broker.api.errors import ApiError, ApiErrorCode
from broker.core.config import IdentityConfig
from broker.core.security import (
    build_signed_token,
    decode_signed_token,
    hash_password,
    verify_password,
)
from broker.identity.models import IdentityCredential, IdentityUser, IdentityUserRecord
from broker.identity.repository import EmailTakenError, IdentityRepository
from broker.tenancy.models import UserProfile

LOGGER = logging.getLogger(__name__)


class InvalidCredentialError(Exception):
    """Raised when a bearer credential cannot be verified."""


class ProfileStoreProtocol(Protocol):
    """Profile operations the provider needs from the tenancy store."""

    def upsert_profile(self, profile: UserProfile) -> None:
        """Create or update the profile for an identity user."""

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Return profile by user id."""


class IdentityProviderProtocol(Protocol):
    """Contract the handshake depends on; hosted providers can implement it."""

    def verify_credential(self, credential: str) -> IdentityUser:
        """Return the identity behind a credential or raise ``InvalidCredentialError``."""

    def get_user_by_credential(self, credential: str) -> dict[str, str]:
        """Return ``{"id", "email"}`` for a valid credential."""


class LocalIdentityProvider:
    """Identity provider backed by the broker's own user table."""

    def __init__(
        self,
        repo: IdentityRepository,
        profiles: ProfileStoreProtocol,
        config: IdentityConfig,
    ) -> None:
        self._repo = repo
        self._profiles = profiles
        self._config = config

    def bootstrap_admin_user(self) -> None:
        """Ensure the configured admin exists and carries the admin role."""
        if not self._config.admin_email or not self._config.admin_password:
            return
        existing = self._repo.get_user_by_email(self._config.admin_email)
        if existing is None:
            user = self.sign_up(self._config.admin_email, self._config.admin_password)
            user_id = user.id
        else:
            user_id = existing.user_id
        profile = self._profiles.get_profile(user_id) or UserProfile(
            id=user_id, email=self._config.admin_email
        )
        if profile.metadata.get("role") != "admin":
            profile.metadata["role"] = "admin"
            self._profiles.upsert_profile(profile)
            LOGGER.info("admin_bootstrapped", extra={"user_id": user_id})

    def sign_up(
        self, email: str, password: str, full_name: str | None = None
    ) -> IdentityUser:
        """Create an identity user and its application profile."""
        normalized = email.strip().lower()
        record = IdentityUserRecord(
            user_id=str(uuid.uuid4()),
            email=normalized,
            password_hash=hash_password(password),
            is_active=True,
            email_verified=False,
            created_at=int(time.time()),
        )
        try:
            self._repo.insert_user(record)
        except EmailTakenError as exc:
            raise ApiError(
                status_code=409,
                error_code=ApiErrorCode.EMAIL_TAKEN,
                message="An account with this email already exists",
            ) from exc
        self._profiles.upsert_profile(
            UserProfile(id=record.user_id, email=normalized, full_name=full_name)
        )
        return IdentityUser(id=record.user_id, email=normalized, email_verified=False)

    def sign_in(self, email: str, password: str) -> IdentityCredential:
        """Authenticate credentials and issue a bearer credential."""
        user = self._repo.get_user_by_email(email)
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS,
                message="Invalid credentials",
            )

        now_ts = int(time.time())
        payload = {
            "iss": self._config.issuer,
            "sub": user.user_id,
            "email": user.email,
            "email_verified": user.email_verified,
            "type": "access",
            "iat": now_ts,
            "exp": now_ts + self._config.access_token_ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        return IdentityCredential(
            access_token=build_signed_token(payload, self._config.secret_key),
            expires_in=self._config.access_token_ttl_seconds,
            user=IdentityUser(
                id=user.user_id, email=user.email, email_verified=user.email_verified
            ),
        )

    def verify_credential(self, credential: str) -> IdentityUser:
        """Validate signature, issuer, type and that the user is still active."""
        payload = self._decode(credential)
        user = self._repo.get_user_by_id(str(payload.get("sub") or ""))
        if user is None or not user.is_active:
            raise InvalidCredentialError("User not found")
        return IdentityUser(
            id=user.user_id, email=user.email, email_verified=user.email_verified
        )

    def get_user_by_credential(self, credential: str) -> dict[str, str]:
        user = self.verify_credential(credential)
        return {"id": user.id, "email": user.email}

    def _decode(self, credential: str) -> dict[str, Any]:
        try:
            payload = decode_signed_token(credential, self._config.secret_key)
        except ValueError as exc:
            raise InvalidCredentialError(str(exc)) from exc
        if str(payload.get("iss") or "") != self._config.issuer:
            raise InvalidCredentialError("Invalid token issuer")
        if str(payload.get("type") or "") != "access":
            raise InvalidCredentialError("Invalid token type")
        return payload
