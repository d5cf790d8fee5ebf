"""Client for tenant applications integrating with the broker over HTTP.

Every call returns the broker's JSON body. Transport failures are reported
in the same shape as a refusal (``authorized: False`` or
``success: False``) so callers only branch on the flag.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BrokerClient:
    """Thin wrapper over the broker's handshake endpoints for one application."""

    def __init__(
        self,
        base_url: str,
        application_id: str,
        *,
        session: requests.Session | None = None,
        timeout_sec: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.application_id = application_id
        self._session = session or requests.Session()
        self._timeout_sec = timeout_sec

    def _post(self, path: str, body: dict[str, Any]) -> tuple[bool, dict[str, Any]]:
        response = self._session.post(
            f"{self.base_url}{path}",
            json=body,
            timeout=self._timeout_sec,
        )
        payload = response.json()
        return response.ok, payload if isinstance(payload, dict) else {}

    def verify_user(
        self,
        user_token: str | None = None,
        required_tier_level: int | None = None,
        *,
        include_memberships: bool = False,
    ) -> dict[str, Any]:
        """Ask the broker whether ``user_token`` may use this application."""
        body: dict[str, Any] = {
            "application_id": self.application_id,
            "user_token": user_token,
            "required_tier_level": required_tier_level,
        }
        if include_memberships:
            body["include_memberships"] = True
        try:
            ok, payload = self._post("/auth/verify", body)
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Broker verification request failed: %s", exc)
            return {
                "authorized": False,
                "application": {"id": self.application_id, "name": "Unknown"},
                "error": str(exc) or "Network error",
            }
        if not ok:
            return {
                "authorized": False,
                "application": payload.get("application")
                or {"id": self.application_id, "name": "Unknown"},
                "error": payload.get("error") or "Verification failed",
            }
        return payload

    def has_minimum_tier(self, user_token: str, minimum_tier_level: int) -> bool:
        return bool(self.verify_user(user_token, minimum_tier_level).get("authorized"))

    def get_user_membership(self, user_token: str) -> dict[str, Any] | None:
        return self.verify_user(user_token).get("membership") or None

    def health_check(self) -> dict[str, str]:
        """Report broker status; ``status`` is ``error`` when unreachable."""
        try:
            response = self._session.get(
                f"{self.base_url}/auth/verify", timeout=self._timeout_sec
            )
            data = response.json()
        except (requests.RequestException, ValueError):
            LOGGER.exception("Broker health check failed.")
            return {"status": "error", "version": DEFAULT_VERSION, "timestamp": _now_iso()}
        return {
            "status": data.get("status") or "unknown",
            "version": data.get("version") or DEFAULT_VERSION,
            "timestamp": data.get("timestamp") or _now_iso(),
        }

    def initiate_session(
        self,
        redirect_url: str,
        *,
        user_email: str | None = None,
        state: Any = None,
        expires_in_minutes: int | None = None,
    ) -> dict[str, Any]:
        """Request a login session; on success the body carries ``authUrl``."""
        body: dict[str, Any] = {
            "applicationId": self.application_id,
            "redirectUrl": redirect_url,
        }
        if user_email is not None:
            body["userEmail"] = user_email
        if state is not None:
            body["state"] = state
        if expires_in_minutes is not None:
            body["expiresInMinutes"] = expires_in_minutes
        return self._handshake_call("/auth/sessions", body)

    def complete_session(self, session_token: str, user_id: str) -> dict[str, Any]:
        return self._handshake_call(
            "/auth/sessions/complete",
            {"sessionToken": session_token, "userId": user_id},
        )

    def _handshake_call(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            ok, payload = self._post(path, body)
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Broker request to %s failed: %s", path, exc)
            return {"success": False, "error": str(exc) or "Network error"}
        if not ok:
            return {**payload, "success": False}
        return payload


def create_broker_client(base_url: str, application_id: str) -> BrokerClient:
    return BrokerClient(base_url, application_id)
