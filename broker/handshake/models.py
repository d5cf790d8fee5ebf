"""Result types for the cross-application handshake."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TierSummary(CamelModel):
    id: str
    name: str
    level: int | None = None
    features: Any = None


class PricingSummary(CamelModel):
    monthly_cents: int | None = None
    yearly_cents: int | None = None
    currency: str = "usd"


class MembershipSummary(CamelModel):
    id: str
    status: str
    tier: TierSummary | None = None
    started_at: str | None = None
    ends_at: str | None = None
    renewal_date: str | None = None
    pricing: PricingSummary | None = None


class ApplicationMembershipSummary(CamelModel):
    """A user's standing in one application of the suite."""

    application_id: str
    application_name: str
    application_slug: str
    membership: MembershipSummary


@dataclass(frozen=True)
class RedirectDecision:
    ok: bool
    reason: str = ""


@dataclass(frozen=True)
class IssuedSession:
    token: str
    login_url: str
    expires_at: datetime


@dataclass(frozen=True)
class CompletedSession:
    """Payload released exactly once when a handshake token is consumed."""

    application_id: str
    redirect_url: str
    state: Any
    user_memberships: list[ApplicationMembershipSummary]


class VerificationOutcome(StrEnum):
    BAD_REQUEST = "bad_request"
    APPLICATION_NOT_FOUND = "application_not_found"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_CREDENTIAL = "invalid_credential"
    PROFILE_NOT_FOUND = "profile_not_found"
    NO_MEMBERSHIP = "no_membership"
    INSUFFICIENT_TIER = "insufficient_tier"
    AUTHORIZED = "authorized"


OUTCOME_STATUS_CODES: dict[VerificationOutcome, int] = {
    VerificationOutcome.BAD_REQUEST: 400,
    VerificationOutcome.APPLICATION_NOT_FOUND: 404,
    VerificationOutcome.UNAUTHENTICATED: 200,
    VerificationOutcome.INVALID_CREDENTIAL: 401,
    VerificationOutcome.PROFILE_NOT_FOUND: 404,
    VerificationOutcome.NO_MEMBERSHIP: 200,
    VerificationOutcome.INSUFFICIENT_TIER: 200,
    VerificationOutcome.AUTHORIZED: 200,
}


class ApplicationRef(BaseModel):
    id: str
    name: str


class VerifiedProfile(BaseModel):
    full_name: str | None = None
    avatar_url: str | None = None


class VerifiedUser(BaseModel):
    id: str
    email: str
    profile: VerifiedProfile


class VerifiedTier(BaseModel):
    id: str
    name: str
    tier_level: int | None = None
    features: Any = None


class VerifiedMembership(BaseModel):
    id: str
    status: str
    tier: VerifiedTier | None = None
    started_at: str | None = None
    ends_at: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Structured authorization decision for one application and user."""

    outcome: VerificationOutcome
    authorized: bool = False
    application: ApplicationRef | None = None
    user: VerifiedUser | None = None
    membership: VerifiedMembership | None = None
    user_memberships: list[ApplicationMembershipSummary] | None = None
    error: str | None = None

    @property
    def status_code(self) -> int:
        return OUTCOME_STATUS_CODES[self.outcome]

    def to_payload(self) -> dict[str, Any]:
        """Return the wire body; absent parts are omitted rather than nulled."""
        payload: dict[str, Any] = {"authorized": self.authorized}
        if self.error:
            payload["error"] = self.error
        if self.application is not None:
            payload["application"] = self.application.model_dump()
        if self.user is not None:
            payload["user"] = self.user.model_dump()
            payload["membership"] = (
                self.membership.model_dump() if self.membership is not None else None
            )
        if self.user_memberships is not None:
            payload["userMemberships"] = [
                item.model_dump(by_alias=True) for item in self.user_memberships
            ]
        return payload
