"""Tiered authorization checks for tenant applications."""

from __future__ import annotations

import logging
from typing import Protocol

from broker.api.errors import internal_error
from broker.handshake.memberships import summarize_membership
from broker.handshake.models import (
    ApplicationRef,
    VerificationOutcome,
    VerificationResult,
    VerifiedMembership,
    VerifiedProfile,
    VerifiedTier,
    VerifiedUser,
)
from broker.identity.provider import IdentityProviderProtocol, InvalidCredentialError
from broker.sessions.store import BACKEND_ERRORS
from broker.tenancy.models import MembershipDetails, TenantApplication, UserProfile


class TenancyReadProtocol(Protocol):
    def get_application(self, application_id: str) -> TenantApplication | None:
        """Return application by id."""

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Return profile by user id."""

    def get_active_memberships(
        self, user_id: str, application_id: str
    ) -> list[MembershipDetails]:
        """Return active memberships, strongest tier first."""

    def list_memberships_for_user(self, user_id: str) -> list[MembershipDetails]:
        """Return the user's memberships across every application."""


def tier_satisfies(user_tier_level: int, required_tier_level: int | None) -> bool:
    """Plain integer comparison; no requirement means any active member passes."""
    if required_tier_level is None:
        return True
    return user_tier_level >= required_tier_level


def _verified_membership(details: MembershipDetails) -> VerifiedMembership:
    tier = details.tier
    return VerifiedMembership(
        id=details.membership.id,
        status=str(details.membership.status),
        tier=VerifiedTier(
            id=tier.id, name=tier.name, tier_level=tier.tier_level, features=tier.features
        )
        if tier is not None
        else None,
        started_at=details.membership.started_at,
        ends_at=details.membership.ends_at,
    )


class AuthorizationVerifier:
    """Decide whether a user may use an application at a required tier.

    The verifier only reads; repeated calls with the same inputs return the
    same decision.
    """

    def __init__(
        self,
        *,
        tenancy: TenancyReadProtocol,
        identity: IdentityProviderProtocol,
        logger: logging.Logger,
    ) -> None:
        self._tenancy = tenancy
        self._identity = identity
        self._logger = logger

    def verify(
        self,
        application_id: str | None,
        user_credential: str | None = None,
        required_tier_level: int | None = None,
        *,
        include_all_memberships: bool = False,
    ) -> VerificationResult:
        """Evaluate the decision branches in order; the first match wins."""
        if not application_id:
            return VerificationResult(
                outcome=VerificationOutcome.BAD_REQUEST,
                error="application_id is required",
            )
        try:
            return self._verify(
                application_id,
                user_credential,
                required_tier_level,
                include_all_memberships=include_all_memberships,
            )
        except BACKEND_ERRORS as exc:
            self._logger.exception(
                "authorization_check_failed", extra={"application_id": application_id}
            )
            raise internal_error("Internal server error", authorized=False) from exc

    def _verify(
        self,
        application_id: str,
        user_credential: str | None,
        required_tier_level: int | None,
        *,
        include_all_memberships: bool,
    ) -> VerificationResult:
        application = self._tenancy.get_application(application_id)
        if application is None or not application.is_active:
            return VerificationResult(
                outcome=VerificationOutcome.APPLICATION_NOT_FOUND,
                error="Invalid or inactive application",
            )
        app_ref = ApplicationRef(id=application.id, name=application.name)

        if not user_credential:
            return VerificationResult(
                outcome=VerificationOutcome.UNAUTHENTICATED, application=app_ref
            )

        try:
            identity = self._identity.verify_credential(user_credential)
        except InvalidCredentialError:
            return VerificationResult(
                outcome=VerificationOutcome.INVALID_CREDENTIAL,
                application=app_ref,
                error="Invalid user token",
            )

        profile = self._tenancy.get_profile(identity.id)
        if profile is None:
            return VerificationResult(
                outcome=VerificationOutcome.PROFILE_NOT_FOUND,
                application=app_ref,
                error="User profile not found",
            )

        user = VerifiedUser(
            id=identity.id,
            email=identity.email,
            profile=VerifiedProfile(full_name=profile.full_name, avatar_url=profile.avatar_url),
        )
        user_memberships = (
            [summarize_membership(item) for item in self._tenancy.list_memberships_for_user(identity.id)]
            if include_all_memberships
            else None
        )

        active = self._tenancy.get_active_memberships(identity.id, application.id)
        if not active:
            return VerificationResult(
                outcome=VerificationOutcome.NO_MEMBERSHIP,
                application=app_ref,
                user=user,
                user_memberships=user_memberships,
            )

        chosen = active[0]
        user_tier_level = (chosen.tier.tier_level if chosen.tier else None) or 0
        authorized = tier_satisfies(user_tier_level, required_tier_level)
        return VerificationResult(
            outcome=VerificationOutcome.AUTHORIZED
            if authorized
            else VerificationOutcome.INSUFFICIENT_TIER,
            authorized=authorized,
            application=app_ref,
            user=user,
            membership=_verified_membership(chosen),
            user_memberships=user_memberships,
        )
