from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from broker.client import BrokerClient, create_broker_client


@dataclass
class _Response:
    status_code: int
    payload: Any

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@dataclass
class _Session:
    responses: list[Any]
    calls: list[tuple[str, str, dict[str, Any] | None]] = field(default_factory=list)

    def _next(self) -> _Response:
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url: str, json: dict[str, Any], timeout: float) -> _Response:
        self.calls.append(("POST", url, json))
        return self._next()

    def get(self, url: str, timeout: float) -> _Response:
        self.calls.append(("GET", url, None))
        return self._next()


def _client(*responses: Any) -> tuple[BrokerClient, _Session]:
    session = _Session(list(responses))
    return BrokerClient("https://auth.example.com/", "app-1", session=session), session


def test_verify_user_posts_snake_case_body() -> None:
    payload = {"authorized": True, "application": {"id": "app-1", "name": "Alpha"}}
    client, session = _client(_Response(200, payload))

    result = client.verify_user("token-1", 2)

    assert result == payload
    assert session.calls == [
        (
            "POST",
            "https://auth.example.com/auth/verify",
            {"application_id": "app-1", "user_token": "token-1", "required_tier_level": 2},
        )
    ]


def test_verify_user_maps_error_status_to_refusal() -> None:
    client, _ = _client(
        _Response(401, {"authorized": False, "error": "Invalid user token", "application": {"id": "app-1", "name": "Alpha"}})
    )

    assert client.verify_user("bad") == {
        "authorized": False,
        "application": {"id": "app-1", "name": "Alpha"},
        "error": "Invalid user token",
    }


def test_verify_user_maps_network_error_to_refusal() -> None:
    client, _ = _client(requests.ConnectionError("Network error"))

    assert client.verify_user("token-1") == {
        "authorized": False,
        "application": {"id": "app-1", "name": "Unknown"},
        "error": "Network error",
    }


def test_tier_and_membership_helpers() -> None:
    membership = {"id": "m-1", "status": "active", "tier": None}
    client, _ = _client(
        _Response(200, {"authorized": False}),
        _Response(200, {"authorized": True, "membership": membership}),
        _Response(200, {"authorized": False, "membership": None}),
    )

    assert client.has_minimum_tier("token-1", 3) is False
    assert client.get_user_membership("token-1") == membership
    assert client.get_user_membership("token-1") is None


def test_health_check_reports_error_when_unreachable() -> None:
    status = {"service": "Broker", "status": "operational", "version": "2.0.0", "timestamp": "t"}
    client, session = _client(_Response(200, status), requests.Timeout("slow"))

    assert client.health_check() == {"status": "operational", "version": "2.0.0", "timestamp": "t"}
    failed = client.health_check()
    assert failed["status"] == "error"
    assert failed["version"] == "1.0.0"
    assert failed["timestamp"]
    assert session.calls[0] == ("GET", "https://auth.example.com/auth/verify", None)


def test_initiate_and_complete_session_use_camel_case() -> None:
    client, session = _client(
        _Response(200, {"success": True, "sessionToken": "tok", "authUrl": "https://auth/x"}),
        _Response(400, {"success": False, "error": "Invalid or expired session token"}),
    )

    issued = client.initiate_session("https://alpha.example.com/cb", state={"a": 1})
    completed = client.complete_session("tok", "user-1")

    assert issued["authUrl"] == "https://auth/x"
    assert session.calls[0][2] == {
        "applicationId": "app-1",
        "redirectUrl": "https://alpha.example.com/cb",
        "state": {"a": 1},
    }
    assert session.calls[1][2] == {"sessionToken": "tok", "userId": "user-1"}
    assert completed == {"success": False, "error": "Invalid or expired session token"}


def test_create_broker_client_strips_trailing_slash() -> None:
    client = create_broker_client("https://auth.example.com/", "app-1")

    assert client.base_url == "https://auth.example.com"
    assert client.application_id == "app-1"
