"""SQLite repository for tenant applications, tiers, memberships and profiles."""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from pathlib import Path
from threading import Lock
from typing import Any

from broker.core.database import open_database
from broker.core.security import generate_api_keys
from broker.tenancy.models import (
    ApiKeys,
    ApplicationConfiguration,
    ApplicationStatus,
    BillingPeriod,
    MembershipDetails,
    MembershipStatus,
    MembershipTier,
    PricingPlan,
    TenantApplication,
    UserMembership,
    UserProfile,
)


class TenancyError(Exception):
    """Base class for tenancy store errors the caller can act on."""


class DuplicateSlugError(TenancyError):
    """Raised when a slug is already taken in its scope."""


class ActiveMembershipsError(TenancyError):
    """Raised when deleting an application that still has active members."""


_MEMBERSHIP_SELECT = """
    SELECT
      m.id AS m_id, m.user_id AS m_user_id, m.application_id AS m_application_id,
      m.membership_tier_id AS m_membership_tier_id, m.status AS m_status,
      m.started_at AS m_started_at, m.ends_at AS m_ends_at,
      m.renewal_date AS m_renewal_date, m.created_at AS m_created_at,
      m.updated_at AS m_updated_at,
      t.id AS t_id, t.application_id AS t_application_id, t.name AS t_name,
      t.slug AS t_slug, t.description AS t_description,
      t.features_json AS t_features_json, t.tier_level AS t_tier_level,
      t.created_at AS t_created_at, t.updated_at AS t_updated_at,
      a.*
    FROM user_memberships m
    JOIN applications a ON a.id = m.application_id
    LEFT JOIN membership_tiers t ON t.id = m.membership_tier_id
"""


def _json_or(raw: Any, default: Any) -> Any:
    if raw in (None, ""):
        return default
    try:
        return json.loads(str(raw))
    except json.JSONDecodeError:
        return default


class TenancyRepository:
    """Persistence collaborator for everything the handshake only reads."""

    def __init__(self, database_path: Path, *, timeout_seconds: float = 5.0) -> None:
        """Open the broker database and ensure its schema is migrated."""
        self._connection = open_database(database_path, timeout_seconds=timeout_seconds)
        self._lock = Lock()

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()

    # applications

    def create_application(
        self,
        *,
        name: str,
        slug: str,
        description: str | None = None,
        status: ApplicationStatus = ApplicationStatus.DEVELOPMENT,
        configuration: ApplicationConfiguration | None = None,
    ) -> TenantApplication:
        """Register an application with a freshly generated key pair."""
        now = int(time.time())
        application = TenantApplication(
            id=str(uuid.uuid4()),
            name=name.strip(),
            slug=slug.strip(),
            description=(description or "").strip() or None,
            status=status,
            api_keys=ApiKeys(**generate_api_keys(slug.strip())),
            configuration=configuration or ApplicationConfiguration(),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            try:
                self._connection.execute(
                    """
                    INSERT INTO applications(
                      id, name, slug, description, status,
                      api_keys_json, configuration_json, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        application.id,
                        application.name,
                        application.slug,
                        application.description,
                        str(application.status),
                        application.api_keys.model_dump_json(),
                        application.configuration.model_dump_json(),
                        now,
                        now,
                    ),
                )
                self._connection.commit()
            except sqlite3.IntegrityError as exc:
                self._connection.rollback()
                raise DuplicateSlugError(
                    f"Application with slug {application.slug!r} already exists"
                ) from exc
        return application

    def get_application(self, application_id: str) -> TenantApplication | None:
        """Return application by id."""
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM applications WHERE id = ?", (application_id,)
            ).fetchone()
        return self._application_from_row(row) if row else None

    def get_application_by_slug(self, slug: str) -> TenantApplication | None:
        """Return application by slug."""
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM applications WHERE slug = ?", (slug.strip(),)
            ).fetchone()
        return self._application_from_row(row) if row else None

    def list_applications(self) -> list[TenantApplication]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT * FROM applications ORDER BY created_at DESC, name ASC"
            ).fetchall()
        return [self._application_from_row(row) for row in rows]

    def update_application(
        self,
        application_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        status: ApplicationStatus | None = None,
        configuration: ApplicationConfiguration | None = None,
    ) -> TenantApplication | None:
        """Apply a partial update and return the stored application."""
        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name.strip()
        if description is not None:
            updates["description"] = description.strip() or None
        if status is not None:
            updates["status"] = str(ApplicationStatus(status))
        if configuration is not None:
            updates["configuration_json"] = configuration.model_dump_json()
        if updates:
            updates["updated_at"] = int(time.time())
            assignments = ", ".join(f"{column} = ?" for column in updates)
            with self._lock:
                self._connection.execute(
                    f"UPDATE applications SET {assignments} WHERE id = ?",
                    (*updates.values(), application_id),
                )
                self._connection.commit()
        return self.get_application(application_id)

    def delete_application(self, application_id: str) -> bool:
        """Delete application unless it still has active memberships."""
        with self._lock:
            active = self._connection.execute(
                """
                SELECT COUNT(*) FROM user_memberships
                WHERE application_id = ? AND status = ?
                """,
                (application_id, str(MembershipStatus.ACTIVE)),
            ).fetchone()[0]
            if int(active) > 0:
                raise ActiveMembershipsError(
                    "Cannot delete application with active memberships. "
                    "Please remove all memberships first."
                )
            cursor = self._connection.execute(
                "DELETE FROM applications WHERE id = ?", (application_id,)
            )
            self._connection.commit()
        return cursor.rowcount > 0

    # tiers and pricing

    def create_tier(
        self,
        *,
        application_id: str,
        name: str,
        slug: str,
        tier_level: int | None = None,
        description: str | None = None,
        features: list[Any] | None = None,
    ) -> MembershipTier:
        """Create a tier; slugs are unique within one application."""
        now = int(time.time())
        tier = MembershipTier(
            id=str(uuid.uuid4()),
            application_id=application_id,
            name=name.strip(),
            slug=slug.strip(),
            description=description,
            features=features,
            tier_level=tier_level,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            try:
                self._connection.execute(
                    """
                    INSERT INTO membership_tiers(
                      id, application_id, name, slug, description,
                      features_json, tier_level, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tier.id,
                        tier.application_id,
                        tier.name,
                        tier.slug,
                        tier.description,
                        json.dumps(features) if features is not None else None,
                        tier.tier_level,
                        now,
                        now,
                    ),
                )
                self._connection.commit()
            except sqlite3.IntegrityError as exc:
                self._connection.rollback()
                raise DuplicateSlugError(
                    f"Tier with slug {tier.slug!r} already exists for this application"
                ) from exc
        return tier

    def get_tier(self, tier_id: str) -> MembershipTier | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM membership_tiers WHERE id = ?", (tier_id,)
            ).fetchone()
        return self._tier_from_row(row) if row else None

    def list_tiers_by_application(self, application_id: str) -> list[MembershipTier]:
        """List tiers ordered by ascending tier level."""
        with self._lock:
            rows = self._connection.execute(
                """
                SELECT * FROM membership_tiers
                WHERE application_id = ?
                ORDER BY COALESCE(tier_level, 0) ASC, name ASC
                """,
                (application_id,),
            ).fetchall()
        return [self._tier_from_row(row) for row in rows]

    def update_tier(
        self,
        tier_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        tier_level: int | None = None,
        features: list[Any] | None = None,
    ) -> MembershipTier | None:
        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name.strip()
        if description is not None:
            updates["description"] = description
        if tier_level is not None:
            updates["tier_level"] = int(tier_level)
        if features is not None:
            updates["features_json"] = json.dumps(features)
        if updates:
            updates["updated_at"] = int(time.time())
            assignments = ", ".join(f"{column} = ?" for column in updates)
            with self._lock:
                self._connection.execute(
                    f"UPDATE membership_tiers SET {assignments} WHERE id = ?",
                    (*updates.values(), tier_id),
                )
                self._connection.commit()
        return self.get_tier(tier_id)

    def delete_tier(self, tier_id: str) -> bool:
        """Delete tier; memberships keep existing with no tier reference."""
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM membership_tiers WHERE id = ?", (tier_id,)
            )
            self._connection.commit()
        return cursor.rowcount > 0

    def create_pricing_plan(
        self,
        *,
        membership_tier_id: str,
        billing_period: BillingPeriod,
        price_cents: int,
        currency: str = "usd",
    ) -> PricingPlan:
        plan = PricingPlan(
            id=str(uuid.uuid4()),
            membership_tier_id=membership_tier_id,
            billing_period=billing_period,
            price_cents=price_cents,
            currency=currency.lower(),
        )
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO pricing_plans(
                  id, membership_tier_id, billing_period, price_cents, currency, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(membership_tier_id, billing_period) DO UPDATE SET
                  price_cents = excluded.price_cents,
                  currency = excluded.currency
                """,
                (
                    plan.id,
                    plan.membership_tier_id,
                    str(plan.billing_period),
                    plan.price_cents,
                    plan.currency,
                    int(time.time()),
                ),
            )
            self._connection.commit()
        return plan

    # memberships

    def create_membership(
        self,
        *,
        user_id: str,
        application_id: str,
        membership_tier_id: str | None = None,
        status: MembershipStatus = MembershipStatus.ACTIVE,
        started_at: str | None = None,
        ends_at: str | None = None,
        renewal_date: str | None = None,
    ) -> UserMembership:
        now = int(time.time())
        membership = UserMembership(
            id=str(uuid.uuid4()),
            user_id=user_id,
            application_id=application_id,
            membership_tier_id=membership_tier_id,
            status=status,
            started_at=started_at,
            ends_at=ends_at,
            renewal_date=renewal_date,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO user_memberships(
                  id, user_id, application_id, membership_tier_id, status,
                  started_at, ends_at, renewal_date, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    membership.id,
                    membership.user_id,
                    membership.application_id,
                    membership.membership_tier_id,
                    str(membership.status),
                    membership.started_at,
                    membership.ends_at,
                    membership.renewal_date,
                    now,
                    now,
                ),
            )
            self._connection.commit()
        return membership

    def get_active_memberships(
        self, user_id: str, application_id: str
    ) -> list[MembershipDetails]:
        """Return active memberships, strongest tier first.

        Ordering is highest tier level (missing level counts as 0), then
        earliest ``started_at``, then id, so callers taking the first row get
        a deterministic answer when duplicates exist.
        """
        with self._lock:
            rows = self._connection.execute(
                _MEMBERSHIP_SELECT
                + """
                WHERE m.user_id = ? AND m.application_id = ? AND m.status = ?
                ORDER BY COALESCE(t.tier_level, 0) DESC,
                         m.started_at IS NULL, m.started_at ASC, m.id ASC
                """,
                (user_id, application_id, str(MembershipStatus.ACTIVE)),
            ).fetchall()
            return [self._details_from_row(row) for row in rows]

    def list_memberships_for_user(self, user_id: str) -> list[MembershipDetails]:
        """Return the user's memberships across every application."""
        with self._lock:
            rows = self._connection.execute(
                _MEMBERSHIP_SELECT
                + """
                WHERE m.user_id = ?
                ORDER BY a.name ASC, m.created_at ASC, m.id ASC
                """,
                (user_id,),
            ).fetchall()
            return [self._details_from_row(row) for row in rows]

    def update_membership_status(
        self, membership_id: str, status: MembershipStatus
    ) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "UPDATE user_memberships SET status = ?, updated_at = ? WHERE id = ?",
                (str(MembershipStatus(status)), int(time.time()), membership_id),
            )
            self._connection.commit()
        return cursor.rowcount > 0

    # profiles and admin

    def upsert_profile(self, profile: UserProfile) -> None:
        """Create or update the profile for an identity user."""
        now = int(time.time())
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO user_profiles(
                  id, email, full_name, avatar_url, metadata_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  email = excluded.email,
                  full_name = COALESCE(excluded.full_name, user_profiles.full_name),
                  avatar_url = COALESCE(excluded.avatar_url, user_profiles.avatar_url),
                  metadata_json = excluded.metadata_json,
                  updated_at = excluded.updated_at
                """,
                (
                    profile.id,
                    profile.email,
                    profile.full_name,
                    profile.avatar_url,
                    json.dumps(profile.metadata, ensure_ascii=False),
                    now,
                    now,
                ),
            )
            self._connection.commit()

    def get_profile(self, user_id: str) -> UserProfile | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM user_profiles WHERE id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return UserProfile(
            id=str(row["id"]),
            email=row["email"],
            full_name=row["full_name"],
            avatar_url=row["avatar_url"],
            metadata=_json_or(row["metadata_json"], {}),
        )

    def is_admin(self, user_id: str) -> bool:
        """Return whether the profile metadata grants the admin role."""
        profile = self.get_profile(user_id)
        return profile is not None and profile.metadata.get("role") == "admin"

    def record_audit(
        self,
        *,
        table_name: str,
        record_id: str,
        action: str,
        new_values: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> None:
        """Append an audit row."""
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO audit_logs(
                  id, table_name, record_id, action, new_values_json, user_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    table_name,
                    record_id,
                    action,
                    json.dumps(new_values, ensure_ascii=False) if new_values is not None else None,
                    user_id,
                    int(time.time()),
                ),
            )
            self._connection.commit()

    def list_audit(self, *, record_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM audit_logs"
        params: tuple[Any, ...] = ()
        if record_id is not None:
            query += " WHERE record_id = ?"
            params = (record_id,)
        with self._lock:
            rows = self._connection.execute(query + " ORDER BY created_at ASC", params).fetchall()
        return [
            {
                "id": str(row["id"]),
                "table_name": str(row["table_name"]),
                "record_id": str(row["record_id"]),
                "action": str(row["action"]),
                "new_values": _json_or(row["new_values_json"], None),
                "user_id": row["user_id"],
                "created_at": int(row["created_at"]),
            }
            for row in rows
        ]

    # row mapping

    @staticmethod
    def _application_from_row(row: sqlite3.Row) -> TenantApplication:
        return TenantApplication(
            id=str(row["id"]),
            name=str(row["name"]),
            slug=str(row["slug"]),
            description=row["description"],
            status=ApplicationStatus(str(row["status"])),
            api_keys=ApiKeys.model_validate(_json_or(row["api_keys_json"], {})),
            configuration=ApplicationConfiguration.model_validate(
                _json_or(row["configuration_json"], {})
            ),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )

    @staticmethod
    def _tier_from_row(row: sqlite3.Row, prefix: str = "") -> MembershipTier:
        return MembershipTier(
            id=str(row[f"{prefix}id"]),
            application_id=str(row[f"{prefix}application_id"]),
            name=str(row[f"{prefix}name"]),
            slug=str(row[f"{prefix}slug"]),
            description=row[f"{prefix}description"],
            features=_json_or(row[f"{prefix}features_json"], None),
            tier_level=row[f"{prefix}tier_level"],
            created_at=int(row[f"{prefix}created_at"]),
            updated_at=int(row[f"{prefix}updated_at"]),
        )

    def _details_from_row(self, row: sqlite3.Row) -> MembershipDetails:
        """Map a joined membership row; caller must hold the lock."""
        membership = UserMembership(
            id=str(row["m_id"]),
            user_id=str(row["m_user_id"]),
            application_id=str(row["m_application_id"]),
            membership_tier_id=row["m_membership_tier_id"],
            status=MembershipStatus(str(row["m_status"])),
            started_at=row["m_started_at"],
            ends_at=row["m_ends_at"],
            renewal_date=row["m_renewal_date"],
            created_at=int(row["m_created_at"]),
            updated_at=int(row["m_updated_at"]),
        )
        tier = self._tier_from_row(row, prefix="t_") if row["t_id"] is not None else None
        pricing: list[PricingPlan] = []
        if tier is not None:
            pricing = [
                PricingPlan(
                    id=str(plan["id"]),
                    membership_tier_id=str(plan["membership_tier_id"]),
                    billing_period=BillingPeriod(str(plan["billing_period"])),
                    price_cents=int(plan["price_cents"]),
                    currency=str(plan["currency"]),
                )
                for plan in self._connection.execute(
                    "SELECT * FROM pricing_plans WHERE membership_tier_id = ?",
                    (tier.id,),
                ).fetchall()
            ]
        return MembershipDetails(
            membership=membership,
            tier=tier,
            pricing=pricing,
            application=self._application_from_row(row),
        )
