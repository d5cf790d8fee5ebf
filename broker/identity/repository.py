"""Repository for identity users."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock

from broker.core.database import open_database
from broker.identity.models import IdentityUserRecord


class EmailTakenError(Exception):
    """Raised when signing up with an email that already exists."""


class IdentityRepository:
    """SQLite storage for identity users, keyed by normalized email."""

    def __init__(self, database_path: Path, *, timeout_seconds: float = 5.0) -> None:
        """Initialize repository storage backend."""
        self._connection = open_database(database_path, timeout_seconds=timeout_seconds)
        self._lock = Lock()

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    def get_user_by_email(self, email: str) -> IdentityUserRecord | None:
        """Get user by email, case-insensitively."""
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM identity_users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        return self._record_from_row(row) if row else None

    def get_user_by_id(self, user_id: str) -> IdentityUserRecord | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM identity_users WHERE user_id = ?", (user_id,)
            ).fetchone()
        return self._record_from_row(row) if row else None

    def insert_user(self, user: IdentityUserRecord) -> None:
        """Create a user; the email column is unique."""
        with self._lock:
            try:
                self._connection.execute(
                    """
                    INSERT INTO identity_users(
                      user_id, email, password_hash, is_active, email_verified, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user.user_id,
                        user.email.strip().lower(),
                        user.password_hash,
                        int(user.is_active),
                        int(user.email_verified),
                        user.created_at,
                    ),
                )
                self._connection.commit()
            except sqlite3.IntegrityError as exc:
                self._connection.rollback()
                raise EmailTakenError(user.email) from exc

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> IdentityUserRecord:
        return IdentityUserRecord(
            user_id=str(row["user_id"]),
            email=str(row["email"]),
            password_hash=str(row["password_hash"]),
            is_active=bool(row["is_active"]),
            email_verified=bool(row["email_verified"]),
            created_at=int(row["created_at"]),
        )
