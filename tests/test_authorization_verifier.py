from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import pytest

from broker.api.errors import ApiError
from broker.handshake.models import VerificationOutcome
from broker.handshake.verifier import AuthorizationVerifier, tier_satisfies
from broker.identity.models import IdentityUser
from broker.identity.provider import InvalidCredentialError
from broker.tenancy.models import ApplicationStatus, MembershipStatus, UserProfile
from broker.tenancy.repository import TenancyRepository
from tests.broker_factories import seed_application

LOGGER = logging.getLogger(__name__)


@dataclass
class _Identity:
    users: dict[str, IdentityUser]

    def verify_credential(self, credential: str) -> IdentityUser:
        user = self.users.get(credential)
        if user is None:
            raise InvalidCredentialError("unknown token")
        return user

    def get_user_by_credential(self, credential: str) -> dict[str, str]:
        user = self.verify_credential(credential)
        return {"id": user.id, "email": user.email}


class _BrokenTenancy:
    def get_application(self, application_id: str):
        raise sqlite3.OperationalError("database is locked")


def _setup(tmp_path: Path) -> tuple[AuthorizationVerifier, TenancyRepository, str]:
    tenancy = TenancyRepository(tmp_path / "broker.db")
    app = seed_application(tenancy)
    tenancy.upsert_profile(UserProfile(id="user-1", email="ann@example.com", full_name="Ann"))
    identity = _Identity(
        {
            "token-ann": IdentityUser(id="user-1", email="ann@example.com"),
            "token-ghost": IdentityUser(id="ghost", email="ghost@example.com"),
        }
    )
    return AuthorizationVerifier(tenancy=tenancy, identity=identity, logger=LOGGER), tenancy, app.id


def test_verify_requires_application_id(tmp_path: Path) -> None:
    verifier, _, _ = _setup(tmp_path)

    result = verifier.verify(None, "token-ann")

    assert result.outcome == VerificationOutcome.BAD_REQUEST
    assert result.status_code == 400
    assert result.to_payload() == {"authorized": False, "error": "application_id is required"}


def test_verify_rejects_unknown_and_inactive_applications(tmp_path: Path) -> None:
    verifier, tenancy, app_id = _setup(tmp_path)

    missing = verifier.verify("app-404", "token-ann")
    tenancy.update_application(app_id, status=ApplicationStatus.INACTIVE)
    inactive = verifier.verify(app_id, "token-ann")

    for result in (missing, inactive):
        assert result.status_code == 404
        assert result.to_payload() == {
            "authorized": False,
            "error": "Invalid or inactive application",
        }


def test_verify_without_credential_is_unauthenticated_but_ok(tmp_path: Path) -> None:
    verifier, _, app_id = _setup(tmp_path)

    result = verifier.verify(app_id)

    assert result.status_code == 200
    assert result.to_payload() == {
        "authorized": False,
        "application": {"id": app_id, "name": "Alpha"},
    }


def test_verify_invalid_credential_and_missing_profile(tmp_path: Path) -> None:
    verifier, _, app_id = _setup(tmp_path)

    invalid = verifier.verify(app_id, "token-forged")
    ghost = verifier.verify(app_id, "token-ghost")

    assert invalid.status_code == 401
    assert invalid.to_payload()["error"] == "Invalid user token"
    assert ghost.status_code == 404
    assert ghost.outcome == VerificationOutcome.PROFILE_NOT_FOUND
    assert ghost.to_payload()["error"] == "User profile not found"


def test_verify_without_membership_returns_user_and_null_membership(tmp_path: Path) -> None:
    verifier, _, app_id = _setup(tmp_path)

    result = verifier.verify(app_id, "token-ann")

    assert result.outcome == VerificationOutcome.NO_MEMBERSHIP
    payload = result.to_payload()
    assert payload["authorized"] is False
    assert payload["membership"] is None
    assert payload["user"] == {
        "id": "user-1",
        "email": "ann@example.com",
        "profile": {"full_name": "Ann", "avatar_url": None},
    }


def test_verify_tier_requirement_is_monotonic(tmp_path: Path) -> None:
    verifier, tenancy, app_id = _setup(tmp_path)
    pro = tenancy.create_tier(application_id=app_id, name="Pro", slug="pro", tier_level=2)
    tenancy.create_membership(user_id="user-1", application_id=app_id, membership_tier_id=pro.id)

    decisions = {
        required: verifier.verify(app_id, "token-ann", required).authorized
        for required in (None, 0, 1, 2, 3, 10)
    }

    assert decisions == {None: True, 0: True, 1: True, 2: True, 3: False, 10: False}
    insufficient = verifier.verify(app_id, "token-ann", 3)
    assert insufficient.outcome == VerificationOutcome.INSUFFICIENT_TIER
    assert insufficient.status_code == 200
    assert insufficient.to_payload()["membership"]["tier"]["tier_level"] == 2


def test_verify_membership_without_tier_counts_as_level_zero(tmp_path: Path) -> None:
    verifier, tenancy, app_id = _setup(tmp_path)
    tenancy.create_membership(user_id="user-1", application_id=app_id)

    assert verifier.verify(app_id, "token-ann", 0).authorized is True
    assert verifier.verify(app_id, "token-ann", 1).authorized is False


def test_verify_ignores_inactive_memberships_and_picks_highest_tier(tmp_path: Path) -> None:
    verifier, tenancy, app_id = _setup(tmp_path)
    basic = tenancy.create_tier(application_id=app_id, name="Basic", slug="basic", tier_level=1)
    gold = tenancy.create_tier(application_id=app_id, name="Gold", slug="gold", tier_level=5)
    tenancy.create_membership(user_id="user-1", application_id=app_id, membership_tier_id=basic.id)
    tenancy.create_membership(
        user_id="user-1",
        application_id=app_id,
        membership_tier_id=gold.id,
        status=MembershipStatus.CANCELED,
    )

    assert verifier.verify(app_id, "token-ann", 5).authorized is False

    tenancy.create_membership(user_id="user-1", application_id=app_id, membership_tier_id=gold.id)
    result = verifier.verify(app_id, "token-ann", 5)
    assert result.authorized is True
    assert result.membership is not None and result.membership.tier is not None
    assert result.membership.tier.name == "Gold"


def test_verify_is_repeatable_and_can_include_all_memberships(tmp_path: Path) -> None:
    verifier, tenancy, app_id = _setup(tmp_path)
    beta = seed_application(tenancy, name="Beta", slug="beta")
    tenancy.create_membership(user_id="user-1", application_id=app_id)
    tenancy.create_membership(user_id="user-1", application_id=beta.id)

    first = verifier.verify(app_id, "token-ann", 0, include_all_memberships=True).to_payload()
    second = verifier.verify(app_id, "token-ann", 0, include_all_memberships=True).to_payload()

    assert first == second
    assert [item["applicationSlug"] for item in first["userMemberships"]] == ["alpha", "beta"]
    assert "userMemberships" not in verifier.verify(app_id, "token-ann").to_payload()


def test_verify_maps_backend_failure_to_500() -> None:
    verifier = AuthorizationVerifier(
        tenancy=_BrokenTenancy(), identity=_Identity({}), logger=LOGGER
    )

    with pytest.raises(ApiError) as exc:
        verifier.verify("app-1", "token-ann")

    assert exc.value.status_code == 500
    assert exc.value.detail["authorized"] is False


def test_tier_satisfies_is_plain_comparison() -> None:
    assert tier_satisfies(0, None)
    assert tier_satisfies(3, 3)
    assert not tier_satisfies(2, 3)
