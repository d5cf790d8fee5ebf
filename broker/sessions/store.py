"""Auth session persistence with atomic single-use consumption."""

from __future__ import annotations

import json
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from broker.core.database import open_database
from broker.sessions.models import AuthSessionRecord


class StoreError(Exception):
    """Raised when the session backend fails; never a caller mistake."""


class TokenCollisionError(StoreError):
    """Raised when a freshly generated token already exists."""


BACKEND_ERRORS = (StoreError, sqlite3.Error, PyMongoError)


class SessionStoreProtocol(Protocol):
    """Operations the handshake services need from a session backend."""

    def create(self, record: AuthSessionRecord) -> None:
        """Persist a new unconsumed session; raise ``TokenCollisionError`` on duplicates."""

    def consume(self, token: str, *, user_id: str, now: int | None = None) -> AuthSessionRecord | None:
        """Atomically mark a live session consumed and return it, else ``None``."""

    def sweep_expired(self, *, now: int | None = None) -> int:
        """Delete sessions past expiry and return how many were removed."""


class SQLiteSessionStore:
    """Session store backed by the broker SQLite database."""

    def __init__(self, database_path: Path, *, timeout_seconds: float = 5.0) -> None:
        self._connection = open_database(database_path, timeout_seconds=timeout_seconds)
        self._lock = Lock()

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()

    def create(self, record: AuthSessionRecord) -> None:
        """Insert a session row."""
        try:
            with self._lock:
                try:
                    self._connection.execute(
                        """
                        INSERT INTO auth_sessions(
                          token, application_id, redirect_url, user_email, state_json,
                          created_at, expires_at, consumed_at, consumed_by,
                          user_agent, client_ip
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?)
                        """,
                        (
                            record.token,
                            record.application_id,
                            record.redirect_url,
                            record.user_email,
                            json.dumps(record.state, ensure_ascii=False)
                            if record.state is not None
                            else None,
                            record.created_at,
                            record.expires_at,
                            record.user_agent,
                            record.client_ip,
                        ),
                    )
                    self._connection.commit()
                except sqlite3.IntegrityError as exc:
                    self._connection.rollback()
                    if "auth_sessions.token" in str(exc):
                        raise TokenCollisionError("Session token already exists") from exc
                    raise
        except TokenCollisionError:
            raise
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to persist auth session: {exc}") from exc

    def consume(
        self, token: str, *, user_id: str, now: int | None = None
    ) -> AuthSessionRecord | None:
        """Consume with one conditional UPDATE so only one caller can win."""
        moment = int(time.time()) if now is None else now
        try:
            with self._lock:
                rows = self._connection.execute(
                    """
                    UPDATE auth_sessions
                    SET consumed_at = ?, consumed_by = ?
                    WHERE token = ?
                      AND consumed_at IS NULL
                      AND expires_at > ?
                    RETURNING *
                    """,
                    (moment, user_id, token, moment),
                ).fetchall()
                self._connection.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to consume auth session: {exc}") from exc
        return self._record_from_row(rows[0]) if rows else None

    def sweep_expired(self, *, now: int | None = None) -> int:
        """Delete rows already past expiry; live sessions are never touched."""
        moment = int(time.time()) if now is None else now
        try:
            with self._lock:
                cursor = self._connection.execute(
                    "DELETE FROM auth_sessions WHERE expires_at <= ?", (moment,)
                )
                self._connection.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to sweep auth sessions: {exc}") from exc
        return int(cursor.rowcount)

    def count_expired(self, *, now: int | None = None) -> int:
        moment = int(time.time()) if now is None else now
        try:
            with self._lock:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM auth_sessions WHERE expires_at <= ?", (moment,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to count auth sessions: {exc}") from exc
        return int(row[0])

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> AuthSessionRecord:
        state_raw = row["state_json"]
        return AuthSessionRecord(
            token=str(row["token"]),
            application_id=str(row["application_id"]),
            redirect_url=str(row["redirect_url"]),
            user_email=row["user_email"],
            state=json.loads(state_raw) if state_raw is not None else None,
            created_at=int(row["created_at"]),
            expires_at=int(row["expires_at"]),
            consumed_at=row["consumed_at"],
            consumed_by=row["consumed_by"],
            user_agent=str(row["user_agent"] or ""),
            client_ip=str(row["client_ip"] or ""),
        )


class MongoSessionStore:
    """Session store backed by a MongoDB collection.

    ``expires_at_dt`` carries a TTL index so MongoDB removes stale documents
    on its own; ``sweep_expired`` remains available for immediate cleanup.
    """

    def __init__(self, collection: Any, client: Any = None) -> None:
        self._collection = collection
        self._client = client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    @classmethod
    def from_uri(cls, mongo_uri: str, mongo_db: str) -> "MongoSessionStore":
        """Connect, verify reachability and ensure indexes."""
        client: Any = MongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
        try:
            client.admin.command("ping")
            collection = client[mongo_db]["auth_sessions"]
            collection.create_index("token", unique=True)
            collection.create_index(
                "expires_at_dt",
                expireAfterSeconds=0,
                name="idx_auth_sessions_expires_at_ttl",
            )
        except PyMongoError as exc:
            client.close()
            raise StoreError(f"MongoDB session store unavailable: {exc}") from exc
        return cls(collection, client)

    def create(self, record: AuthSessionRecord) -> None:
        doc = record.model_dump()
        doc["expires_at_dt"] = datetime.fromtimestamp(record.expires_at, tz=timezone.utc)
        try:
            self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise TokenCollisionError("Session token already exists") from exc
        except PyMongoError as exc:
            raise StoreError(f"Failed to persist auth session: {exc}") from exc

    def consume(
        self, token: str, *, user_id: str, now: int | None = None
    ) -> AuthSessionRecord | None:
        """Consume with ``find_one_and_update`` guarded by the validity filter."""
        moment = int(time.time()) if now is None else now
        try:
            doc = self._collection.find_one_and_update(
                {"token": token, "consumed_at": None, "expires_at": {"$gt": moment}},
                {"$set": {"consumed_at": moment, "consumed_by": user_id}},
                projection={"_id": 0, "expires_at_dt": 0},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise StoreError(f"Failed to consume auth session: {exc}") from exc
        return AuthSessionRecord.model_validate(doc) if doc else None

    def sweep_expired(self, *, now: int | None = None) -> int:
        moment = int(time.time()) if now is None else now
        try:
            result = self._collection.delete_many({"expires_at": {"$lte": moment}})
        except PyMongoError as exc:
            raise StoreError(f"Failed to sweep auth sessions: {exc}") from exc
        return int(result.deleted_count)

    def count_expired(self, *, now: int | None = None) -> int:
        moment = int(time.time()) if now is None else now
        try:
            return int(self._collection.count_documents({"expires_at": {"$lte": moment}}))
        except PyMongoError as exc:
            raise StoreError(f"Failed to count auth sessions: {exc}") from exc
