"""Sign-in brute-force protection backed by the broker SQLite database."""

from __future__ import annotations

import time
from pathlib import Path
from threading import Lock

from broker.api.errors import ApiError, ApiErrorCode
from broker.core.database import open_database


def _principal(email: str, client_ip: str) -> tuple[str, str]:
    return email.strip().lower(), client_ip.strip() or "unknown"


class LoginRateLimiter:
    """Rate limiter for sign-in attempts by normalized (email, ip) tuple."""

    def __init__(
        self,
        *,
        database_path: Path,
        max_attempts: int,
        window_seconds: int,
        lock_seconds: int,
    ) -> None:
        """Initialize limiter storage and policy parameters."""
        self._connection = open_database(database_path)
        self._lock = Lock()
        self._max_attempts = max(1, int(max_attempts))
        self._window_seconds = max(1, int(window_seconds))
        self._lock_seconds = max(1, int(lock_seconds))

    def assert_allowed(self, *, email: str, client_ip: str) -> None:
        """Raise 429 while the principal is locked out."""
        now = int(time.time())
        key = _principal(email, client_ip)
        with self._lock:
            row = self._connection.execute(
                """
                SELECT first_failed_at, locked_until
                FROM auth_login_attempts
                WHERE email = ? AND client_ip = ?
                """,
                key,
            ).fetchone()
            if row is None:
                return

            locked_until = int(row["locked_until"] or 0)
            if locked_until > now:
                raise ApiError(
                    status_code=429,
                    error_code=ApiErrorCode.AUTH_RATE_LIMITED,
                    message=(
                        "Too many login attempts. "
                        f"Retry after {locked_until - now} seconds."
                    ),
                )

            first_failed_at = int(row["first_failed_at"] or 0)
            if first_failed_at and (now - first_failed_at) > self._window_seconds:
                self._clear(key)

    def record_success(self, *, email: str, client_ip: str) -> None:
        """Reset limiter state after successful sign-in."""
        with self._lock:
            self._clear(_principal(email, client_ip))

    def record_failure(self, *, email: str, client_ip: str) -> None:
        """Record failed sign-in and lock once the threshold is reached."""
        now = int(time.time())
        key = _principal(email, client_ip)
        with self._lock:
            row = self._connection.execute(
                """
                SELECT failed_attempts, first_failed_at
                FROM auth_login_attempts
                WHERE email = ? AND client_ip = ?
                """,
                key,
            ).fetchone()

            failed_attempts, first_failed_at = 1, now
            if row is not None:
                previous_first = int(row["first_failed_at"] or 0)
                if not previous_first or (now - previous_first) <= self._window_seconds:
                    failed_attempts = int(row["failed_attempts"] or 0) + 1
                    first_failed_at = previous_first or now

            locked_until = (
                now + self._lock_seconds if failed_attempts >= self._max_attempts else 0
            )
            self._connection.execute(
                """
                INSERT INTO auth_login_attempts(
                  email, client_ip, failed_attempts, first_failed_at, last_failed_at, locked_until
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(email, client_ip) DO UPDATE SET
                  failed_attempts = excluded.failed_attempts,
                  first_failed_at = excluded.first_failed_at,
                  last_failed_at = excluded.last_failed_at,
                  locked_until = excluded.locked_until
                """,
                (*key, failed_attempts, first_failed_at, now, locked_until),
            )
            self._connection.commit()

    def close(self) -> None:
        """Close SQLite resources."""
        with self._lock:
            self._connection.close()

    def _clear(self, key: tuple[str, str]) -> None:
        self._connection.execute(
            "DELETE FROM auth_login_attempts WHERE email = ? AND client_ip = ?",
            key,
        )
        self._connection.commit()
