"""Redirect allow-list enforcement for tenant applications.

An allow-list entry matches a candidate URL when both are absolute http(s)
URLs without userinfo, scheme, host and effective port are equal, and the
candidate path equals the entry path or extends it past a ``/`` boundary.
Paths carrying dot segments or percent-encoded separators never match.
Query strings and fragments of the candidate are not compared, so tenants
can carry their own parameters through the callback.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import unquote, urlsplit

from broker.handshake.models import RedirectDecision
from broker.tenancy.models import ApplicationStatus, TenantApplication

URL_WARN_LENGTH = 2048
URL_FAIL_LENGTH = 8192

_DEFAULT_PORTS = {"http": 80, "https": 443}


class ApplicationSourceProtocol(Protocol):
    """Tenancy operations the validator depends on."""

    def get_application(self, application_id: str) -> TenantApplication | None:
        """Return application by id."""

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


def check_url_length(logger: logging.Logger, label: str, url: str, **extra: Any) -> None:
    """Warn above 2048 characters and log an error above 8192; never raise."""
    length = len(url)
    if length > URL_FAIL_LENGTH:
        logger.error(
            f"{label} exceeds {URL_FAIL_LENGTH} characters, likely to cause failures",
            extra={"redirect_length": length, **extra},
        )
    elif length > URL_WARN_LENGTH:
        logger.warning(
            f"{label} exceeds {URL_WARN_LENGTH} characters, may cause issues",
            extra={"redirect_length": length, **extra},
        )


def _path_is_plain(path: str) -> bool:
    lowered = path.lower()
    if "%2f" in lowered or "%5c" in lowered:
        return False
    return not any(segment in (".", "..") for segment in unquote(path).split("/"))


def _normalize(url: str) -> tuple[str, str, int, str] | None:
    raw = url.strip()
    if not raw or "\\" in raw or any(ord(ch) < 33 for ch in raw):
        return None
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None
    if parts.username is not None or parts.password is not None:
        return None
    if not _path_is_plain(parts.path):
        return None
    return (
        scheme,
        parts.hostname.lower(),
        port or _DEFAULT_PORTS[scheme],
        parts.path or "/",
    )


def redirect_matches(candidate: str, entry: str) -> bool:
    """Return whether ``candidate`` is covered by allow-list ``entry``."""
    wanted = _normalize(candidate)
    allowed = _normalize(entry)
    if wanted is None or allowed is None:
        return False
    if wanted[:3] != allowed[:3]:
        return False
    allowed_path = allowed[3]
    if wanted[3] == allowed_path:
        return True
    return wanted[3].startswith(allowed_path.rstrip("/") + "/")


class RedirectValidator:
    """Fail-closed check of a redirect URL against a tenant's allow-list."""

    def __init__(self, applications: ApplicationSourceProtocol, logger: logging.Logger) -> None:
        self._applications = applications
        self._logger = logger

    def validate(self, application_id: str, candidate: str) -> RedirectDecision:
        """Return ``RedirectDecision(ok=True)`` only for an allow-listed URL."""
        application = self._applications.get_application(application_id)
        if application is None:
            decision = RedirectDecision(ok=False, reason="application_not_found")
        elif application.status == ApplicationStatus.INACTIVE:
            decision = RedirectDecision(ok=False, reason="application_inactive")
        elif not application.configuration.redirect_urls:
            decision = RedirectDecision(ok=False, reason="allow_list_empty")
        elif _normalize(candidate) is None:
            decision = RedirectDecision(ok=False, reason="malformed_url")
        elif any(
            redirect_matches(candidate, entry)
            for entry in application.configuration.redirect_urls
        ):
            return RedirectDecision(ok=True)
        else:
            decision = RedirectDecision(ok=False, reason="not_allow_listed")

        self._logger.warning(
            "Rejected redirect URL; add it to the application's redirect_urls "
            "allow-list if it is legitimate",
            extra={
                "application_id": application_id,
                "attempted_url": candidate,
                "reason": decision.reason,
            },
        )
        self._applications.record_audit(
            table_name="applications",
            record_id=application_id,
            action="redirect_rejected",
            new_values={"attempted_url": candidate, "reason": decision.reason},
        )
        return decision
