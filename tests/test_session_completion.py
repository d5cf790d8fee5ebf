from __future__ import annotations

import json
import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

from broker.api.errors import ApiError
from broker.handshake.completion import INVALID_TOKEN_MESSAGE, SessionCompletionService
from broker.handshake.models import CompletedSession
from broker.sessions.models import AuthSessionRecord
from broker.sessions.store import SQLiteSessionStore
from broker.tenancy.models import BillingPeriod, MembershipDetails
from broker.tenancy.repository import TenancyRepository
from tests.broker_factories import CALLBACK_URL, seed_application

LOGGER = logging.getLogger(__name__)


class _BrokenMemberships:
    def list_memberships_for_user(self, user_id: str) -> list[MembershipDetails]:
        raise sqlite3.OperationalError("disk I/O error")


def _setup(tmp_path: Path) -> tuple[SessionCompletionService, SQLiteSessionStore, TenancyRepository, str]:
    db_path = tmp_path / "broker.db"
    tenancy = TenancyRepository(db_path)
    store = SQLiteSessionStore(db_path)
    app = seed_application(tenancy)
    service = SessionCompletionService(store=store, memberships=tenancy, logger=LOGGER)
    return service, store, tenancy, app.id


def _issue(store: SQLiteSessionStore, app_id: str, token: str = "tok-1", **overrides) -> None:
    now = int(time.time())
    values = {
        "token": token,
        "application_id": app_id,
        "redirect_url": CALLBACK_URL,
        "state": {"returnTo": "/reports", "filters": {"year": 2024}},
        "created_at": now,
        "expires_at": now + 1800,
    }
    values.update(overrides)
    store.create(AuthSessionRecord(**values))


def test_complete_releases_redirect_state_and_memberships(tmp_path: Path) -> None:
    service, store, tenancy, app_id = _setup(tmp_path)
    tier = tenancy.create_tier(
        application_id=app_id, name="Pro", slug="pro", tier_level=2, features=["reports"]
    )
    tenancy.create_pricing_plan(
        membership_tier_id=tier.id, billing_period=BillingPeriod.MONTHLY, price_cents=900
    )
    tenancy.create_pricing_plan(
        membership_tier_id=tier.id, billing_period=BillingPeriod.YEARLY, price_cents=9000
    )
    beta = seed_application(tenancy, name="Beta", slug="beta")
    tenancy.create_membership(
        user_id="user-1", application_id=app_id, membership_tier_id=tier.id, started_at="2024-01-01"
    )
    tenancy.create_membership(user_id="user-1", application_id=beta.id)
    _issue(store, app_id)

    completed = service.complete("tok-1", "user-1")

    assert completed.application_id == app_id
    assert completed.redirect_url == CALLBACK_URL
    assert completed.state == {"returnTo": "/reports", "filters": {"year": 2024}}
    by_slug = {item.application_slug: item for item in completed.user_memberships}
    assert set(by_slug) == {"alpha", "beta"}
    alpha = by_slug["alpha"].model_dump(by_alias=True)
    assert alpha["applicationName"] == "Alpha"
    assert alpha["membership"]["tier"] == {
        "id": tier.id,
        "name": "Pro",
        "level": 2,
        "features": ["reports"],
    }
    assert alpha["membership"]["startedAt"] == "2024-01-01"
    assert alpha["membership"]["pricing"] == {
        "monthlyCents": 900,
        "yearlyCents": 9000,
        "currency": "usd",
    }
    assert by_slug["beta"].membership.tier is None
    assert by_slug["beta"].membership.pricing is None


def test_complete_succeeds_once_then_reports_invalid_token(tmp_path: Path) -> None:
    service, store, _, app_id = _setup(tmp_path)
    _issue(store, app_id)

    service.complete("tok-1", "user-1")
    with pytest.raises(ApiError) as exc:
        service.complete("tok-1", "user-1")

    assert exc.value.status_code == 400
    assert exc.value.error_code == "INVALID_SESSION_TOKEN"
    assert exc.value.message == INVALID_TOKEN_MESSAGE


def test_complete_gives_same_error_for_unknown_and_expired_tokens(tmp_path: Path) -> None:
    service, store, _, app_id = _setup(tmp_path)
    now = int(time.time())
    _issue(store, app_id, token="expired", created_at=now - 3600, expires_at=now - 1)

    with pytest.raises(ApiError) as expired:
        service.complete("expired", "user-1")
    with pytest.raises(ApiError) as unknown:
        service.complete("never-issued", "user-1")

    assert expired.value.detail == unknown.value.detail


def test_complete_concurrent_callers_get_exactly_one_success(tmp_path: Path) -> None:
    service, store, _, app_id = _setup(tmp_path)
    _issue(store, app_id)

    def attempt(idx: int) -> str:
        try:
            service.complete("tok-1", f"user-{idx}")
        except ApiError as exc:
            return exc.error_code
        return "OK"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(12)))

    assert outcomes.count("OK") == 1
    assert outcomes.count("INVALID_SESSION_TOKEN") == 11


@pytest.mark.parametrize(("token", "user_id"), [("", "user-1"), ("tok-1", ""), (None, None)])
def test_complete_requires_token_and_user(tmp_path: Path, token, user_id) -> None:
    service, _, _, _ = _setup(tmp_path)

    with pytest.raises(ApiError) as exc:
        service.complete(token, user_id)

    assert exc.value.status_code == 400
    assert exc.value.message == "Missing required parameters: sessionToken and userId"


def test_gathering_failure_returns_500_and_leaves_token_spent(tmp_path: Path) -> None:
    _, store, _, app_id = _setup(tmp_path)
    _issue(store, app_id)
    service = SessionCompletionService(
        store=store, memberships=_BrokenMemberships(), logger=LOGGER
    )

    with pytest.raises(ApiError) as exc:
        service.complete("tok-1", "user-1")

    assert exc.value.status_code == 500
    assert exc.value.message == "Failed to complete authentication session"
    assert store.consume("tok-1", user_id="user-1") is None


def test_build_redirect_appends_outcome_and_state(tmp_path: Path) -> None:
    service, _, _, _ = _setup(tmp_path)
    completed = CompletedSession(
        application_id="app-1",
        redirect_url=CALLBACK_URL + "?tenant=1&user_id=spoofed",
        state={"returnTo": "/reports"},
        user_memberships=[],
    )

    url = service.build_redirect(completed, "user-1")

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == CALLBACK_URL
    query = parse_qs(parts.query)
    assert query["tenant"] == ["1"]
    assert query["auth_success"] == ["true"]
    assert query["user_id"] == ["user-1"]
    assert json.loads(query["state"][0]) == {"returnTo": "/reports"}
