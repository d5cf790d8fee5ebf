"""Pydantic models for tenant applications, tiers and memberships."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ApplicationStatus(StrEnum):
    DEVELOPMENT = "development"
    ACTIVE = "active"
    INACTIVE = "inactive"


class MembershipStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingPeriod(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AuthSettings(BaseModel):
    """Per-application sign-in behaviour."""

    require_email_confirmation: bool = True
    allow_signups: bool = True
    session_timeout: int = 3600


class ApplicationConfiguration(BaseModel):
    """Tenant configuration, including the redirect allow-list."""

    redirect_urls: list[str] = Field(default_factory=list)
    cors_origins: list[str] = Field(default_factory=list)
    auth_settings: AuthSettings = Field(default_factory=AuthSettings)
    webhook_endpoints: list[str] = Field(default_factory=list)


class ApiKeys(BaseModel):
    public_key: str
    secret_key: str


class TenantApplication(BaseModel):
    """Registered client system."""

    id: str
    name: str
    slug: str
    description: str | None = None
    status: ApplicationStatus = ApplicationStatus.DEVELOPMENT
    api_keys: ApiKeys
    configuration: ApplicationConfiguration = Field(default_factory=ApplicationConfiguration)
    created_at: int
    updated_at: int

    @property
    def is_active(self) -> bool:
        return self.status == ApplicationStatus.ACTIVE


class MembershipTier(BaseModel):
    """Named tier scoped to one application."""

    id: str
    application_id: str
    name: str
    slug: str
    description: str | None = None
    features: list[Any] | None = None
    tier_level: int | None = None
    created_at: int
    updated_at: int


class PricingPlan(BaseModel):
    id: str
    membership_tier_id: str
    billing_period: BillingPeriod
    price_cents: int
    currency: str = "usd"


class UserMembership(BaseModel):
    """Binding of one user to one application at one tier."""

    id: str
    user_id: str
    application_id: str
    membership_tier_id: str | None = None
    status: MembershipStatus = MembershipStatus.ACTIVE
    started_at: str | None = None
    ends_at: str | None = None
    renewal_date: str | None = None
    created_at: int
    updated_at: int


class UserProfile(BaseModel):
    """Application-level profile for an identity user."""

    id: str
    email: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MembershipDetails(BaseModel):
    """Membership joined with its tier and pricing, as returned by queries."""

    membership: UserMembership
    tier: MembershipTier | None = None
    pricing: list[PricingPlan] = Field(default_factory=list)
    application: TenantApplication
