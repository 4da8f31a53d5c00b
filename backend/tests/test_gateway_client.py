"""Tests for the gateway session manager and action client."""

from __future__ import annotations

import threading
import time as time_module
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import requests

from door_scheduler.gateway import session as session_module
from door_scheduler.gateway.client import GatewayActionClient, LOCK_UNLOCK_PATH
from door_scheduler.gateway.session import GatewaySession


@dataclass
class DummyResponse:
    ok: bool = True
    status_code: int = 200
    text: str = "OK"
    reason: str = "OK"


def _fail(status_code: int, reason: str) -> DummyResponse:
    return DummyResponse(ok=False, status_code=status_code, text=reason, reason=reason)


class SequencedSession:
    """Stand-in for requests.Session that replays scripted outcomes."""

    def __init__(self, outcomes: list[Any], *, delay: float = 0.0) -> None:
        self._outcomes = list(outcomes)
        self._delay = delay
        self.calls: list[dict[str, Any]] = []
        self.verify: bool | None = None
        self.closed = False

    def request(self, **kwargs: Any) -> DummyResponse:
        self.calls.append(kwargs)
        if self._delay:
            time_module.sleep(self._delay)
        outcome = self._outcomes.pop(0) if self._outcomes else DummyResponse()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True


def _build(monkeypatch, outcomes, *, delay: float = 0.0, clock=None):
    fake = SequencedSession(outcomes, delay=delay)
    monkeypatch.setattr(session_module.requests, "Session", lambda: fake)
    kwargs = {"clock": clock} if clock else {}
    session = GatewaySession(
        "https://gateway.local/",
        username="admin",
        password="secret",
        verify_ssl=False,
        **kwargs,
    )
    sleeps: list[float] = []
    client = GatewayActionClient(
        session, retry_attempts=3, retry_delay_seconds=5, sleep=sleeps.append
    )
    return client, fake, sleeps


def test_unlock_logs_in_then_posts_action(monkeypatch):
    client, fake, sleeps = _build(monkeypatch, [DummyResponse(), DummyResponse(text="done")])

    response = client.execute_action(101, "unlock")

    assert response.success is True
    assert response.status_code == 200
    assert response.response_body == "done"
    assert sleeps == []
    login, action = fake.calls
    assert login["url"] == "https://gateway.local/"
    assert login["data"] == {"UserName": "admin", "Password": "secret", "LoginType": "1"}
    assert action["url"] == f"https://gateway.local{LOCK_UNLOCK_PATH}"
    assert ("btnUnlockDoor", "true") in action["data"]
    assert ("ReadersSelectedList", "101") in action["data"]
    assert fake.verify is False


def test_lock_uses_lock_button(monkeypatch):
    client, fake, _ = _build(monkeypatch, [DummyResponse(), DummyResponse()])

    assert client.lock(202).success is True
    assert ("btnLockDoor", "true") in fake.calls[1]["data"]


def test_failed_login_returns_401_without_sending_action(monkeypatch):
    client, fake, _ = _build(monkeypatch, [_fail(403, "Forbidden")])

    response = client.execute_action(101, "unlock")

    assert response.success is False
    assert response.status_code == 401
    assert response.error_message == "Failed to authenticate to gateway"
    assert len(fake.calls) == 1


def test_non_success_responses_are_retried_with_fixed_delay(monkeypatch):
    client, fake, sleeps = _build(
        monkeypatch,
        [DummyResponse(), *[_fail(500, "Internal Server Error")] * 3],
    )

    response = client.execute_action(101, "lock")

    assert response.success is False
    assert response.status_code == 500
    assert response.error_message == "HTTP 500: Internal Server Error"
    assert sleeps == [5, 5]
    assert len(fake.calls) == 4


def test_transient_failure_then_success(monkeypatch):
    client, _, sleeps = _build(
        monkeypatch, [DummyResponse(), _fail(503, "Service Unavailable"), DummyResponse()]
    )

    assert client.execute_action(101, "unlock").success is True
    assert sleeps == [5]


def test_transport_errors_are_reported_not_raised(monkeypatch):
    client, _, sleeps = _build(
        monkeypatch,
        [DummyResponse(), *[requests.ConnectionError("connection refused")] * 3],
    )

    response = client.execute_action(101, "unlock")

    assert response.success is False
    assert "connection refused" in response.error_message
    assert sleeps == [5, 5]


def test_unauthorized_response_triggers_single_relogin(monkeypatch):
    client, fake, sleeps = _build(
        monkeypatch,
        [DummyResponse(), _fail(401, "Unauthorized"), DummyResponse(), DummyResponse()],
    )

    response = client.execute_action(101, "unlock")

    assert response.success is True
    assert client.session.generation == 2
    assert sleeps == []
    assert [call["url"] for call in fake.calls] == [
        "https://gateway.local/",
        f"https://gateway.local{LOCK_UNLOCK_PATH}",
        "https://gateway.local/",
        f"https://gateway.local{LOCK_UNLOCK_PATH}",
    ]


def test_invalid_action_is_rejected(monkeypatch):
    client, fake, _ = _build(monkeypatch, [])

    with pytest.raises(ValueError):
        client.execute_action(101, "open")
    assert fake.calls == []


def test_session_expires_after_timeout(monkeypatch):
    current = {"now": datetime(2025, 1, 1, 12, 0, tzinfo=UTC)}
    client, _, _ = _build(monkeypatch, [DummyResponse()], clock=lambda: current["now"])

    assert client.authenticate() is True
    assert client.is_authenticated() is True

    current["now"] += timedelta(minutes=31)
    assert client.is_authenticated() is False


def test_refresh_skips_login_when_another_caller_already_refreshed(monkeypatch):
    client, fake, _ = _build(monkeypatch, [DummyResponse(), DummyResponse()])
    session = client.session

    session.authenticate()
    seen = session.generation
    assert session.refresh(seen) is True
    assert session.generation == seen + 1

    # A second caller that observed the same stale generation does not log in again.
    assert session.refresh(seen) is True
    assert session.generation == seen + 1
    assert len(fake.calls) == 2


def test_concurrent_callers_share_one_login(monkeypatch):
    client, fake, _ = _build(monkeypatch, [], delay=0.02)
    session = client.session
    results: list[bool] = []

    def worker() -> None:
        results.append(session.ensure_authenticated())

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [True] * 5
    assert len(fake.calls) == 1
    assert session.generation == 1
