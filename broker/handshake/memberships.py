"""Membership summaries shared by completion and verification."""

from __future__ import annotations

from broker.handshake.models import (
    ApplicationMembershipSummary,
    MembershipSummary,
    PricingSummary,
    TierSummary,
)
from broker.tenancy.models import BillingPeriod, MembershipDetails


def summarize_pricing(details: MembershipDetails) -> PricingSummary | None:
    if not details.pricing:
        return None
    by_period = {plan.billing_period: plan for plan in details.pricing}
    monthly = by_period.get(BillingPeriod.MONTHLY)
    yearly = by_period.get(BillingPeriod.YEARLY)
    return PricingSummary(
        monthly_cents=monthly.price_cents if monthly else None,
        yearly_cents=yearly.price_cents if yearly else None,
        currency=(monthly or yearly or details.pricing[0]).currency,
    )


def summarize_membership(details: MembershipDetails) -> ApplicationMembershipSummary:
    """Flatten a joined membership row into its cross-application summary."""
    tier = details.tier
    membership = details.membership
    return ApplicationMembershipSummary(
        application_id=details.application.id,
        application_name=details.application.name,
        application_slug=details.application.slug,
        membership=MembershipSummary(
            id=membership.id,
            status=str(membership.status),
            tier=TierSummary(
                id=tier.id, name=tier.name, level=tier.tier_level, features=tier.features
            )
            if tier is not None
            else None,
            started_at=membership.started_at,
            ends_at=membership.ends_at,
            renewal_date=membership.renewal_date,
            pricing=summarize_pricing(details),
        ),
    )
