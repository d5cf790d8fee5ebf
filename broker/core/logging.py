"""JSON-lines logging for the broker with a per-request correlation id.

Handshake events carry structured extras (application id, URL lengths,
rejection reasons). Session tokens are never passed to the logger; only
their length is. Attempted redirect URLs are clipped to ``MAX_LOGGED_URL_CHARS``.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")

MAX_LOGGED_URL_CHARS = 512

HANDSHAKE_FIELDS = (
    "application_id",
    "user_id",
    "token_length",
    "redirect_length",
    "auth_url_length",
    "state_length",
    "attempted_url",
    "reason",
    "deleted",
)
REQUEST_FIELDS = ("path", "method", "status_code")


def _clip(value: str) -> str:
    if len(value) <= MAX_LOGGED_URL_CHARS:
        return value
    return f"{value[:MAX_LOGGED_URL_CHARS]}...(+{len(value) - MAX_LOGGED_URL_CHARS} chars)"


class BrokerLogFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def __init__(self, service_name: str = "") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            entry["service"] = self.service_name
        correlation_id = CORRELATION_ID_CTX.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        for key in HANDSHAKE_FIELDS + REQUEST_FIELDS:
            value = getattr(record, key, None)
            if value in (None, ""):
                continue
            entry[key] = _clip(value) if key == "attempted_url" else value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", *, service_name: str = "") -> None:
    """Route every logger through a single stdout JSON handler."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(BrokerLogFormatter(service_name))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(handler)


def set_correlation_id(correlation_id: str) -> None:
    CORRELATION_ID_CTX.set(correlation_id)
