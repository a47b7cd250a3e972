# tests/api/test_auth_api.py
"""Tests for registration, password login and token endpoints."""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from vimalinx_relay.core.settings import Settings
from vimalinx_relay.main import create_app
from vimalinx_relay.services.state import RelayState

SERVER_TOKEN = "server-token-xyz"


def test_register_then_issue_token(client: TestClient, register: Callable) -> None:
    """A new account can immediately obtain a bearer token."""
    response = register(client, "alice", "secret1")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ok": True, "userId": "alice", "displayName": "alice"}

    response = client.post("/api/token", json={"userId": "alice", "password": "secret1"})
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["ok"] is True and body["userId"] == "alice"
    assert re.fullmatch(r"[0-9a-f]{32}", body["token"])


def test_register_persists_users_file(client: TestClient, register: Callable, users_path: Path) -> None:
    register(client, "alice", "secret1", displayName="Alice A")
    saved = json.loads(users_path.read_text(encoding="utf-8"))["users"]
    assert saved[0]["id"] == "alice"
    assert saved[0]["displayName"] == "Alice A"
    assert saved[0]["passwordHash"].startswith("scrypt$")


def test_register_errors(client: TestClient, register: Callable) -> None:
    assert register(client, "alice", "secret1").status_code == 200
    duplicate = register(client, "ALICE", "secret1")
    assert duplicate.status_code == status.HTTP_409_CONFLICT
    assert duplicate.json() == {"error": "user exists"}
    assert register(client, "x", "secret1").json() == {"error": "userId required"}
    assert register(client, "bob", "123").json() == {"error": "password required"}
    wrong_type = client.post("/api/register", json={"userId": 42, "password": "secret1"})
    assert wrong_type.status_code == status.HTTP_400_BAD_REQUEST
    assert wrong_type.json() == {"error": "invalid userId"}


def test_registration_can_be_disabled(make_client: Callable[..., TestClient], register: Callable) -> None:
    client = make_client(allow_registration=False)
    response = register(client)
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json() == {"error": "registration disabled"}


def test_invite_codes_gate_registration(make_client: Callable[..., TestClient], register: Callable) -> None:
    client = make_client(invite_codes_raw="alpha;beta")
    rejected = register(client, "alice", "secret1", inviteCode="gamma")
    assert rejected.status_code == status.HTTP_403_FORBIDDEN
    assert rejected.json() == {"error": "invalid invite code"}
    assert register(client, "alice", "secret1", inviteCode="beta").status_code == 200


def test_server_token_is_required_when_configured(
    make_client: Callable[..., TestClient], register: Callable
) -> None:
    client = make_client(server_token=SERVER_TOKEN, invite_codes_raw="alpha")
    assert register(client, "alice", "secret1").status_code == status.HTTP_401_UNAUTHORIZED
    by_header = register(
        client, "alice", "secret1", headers={"Authorization": f"Bearer {SERVER_TOKEN}"}
    )
    assert by_header.status_code == 200
    by_body = register(client, "bob", "secret1", serverToken=f" {SERVER_TOKEN} ")
    assert by_body.status_code == 200


def test_registration_without_users_file_fails(
    make_client: Callable[..., TestClient], register: Callable
) -> None:
    client = make_client(users_file=None)
    response = register(client)
    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "not configured" in response.json()["error"]
    assert client.app.state.relay.credentials.get("alice") is None


def test_account_login(client: TestClient, register: Callable) -> None:
    register(client, "alice", "secret1", displayName="Alice")
    ok = client.post("/api/account/login", json={"userId": "Alice", "password": "secret1"})
    assert ok.json() == {"ok": True, "userId": "alice", "displayName": "Alice"}
    bad = client.post("/api/account/login", json={"userId": "alice", "password": "wrong-one"})
    assert bad.status_code == status.HTTP_401_UNAUTHORIZED
    assert bad.json() == {"error": "unauthorized"}
    missing = client.post("/api/account/login", json={"userId": "alice"})
    assert missing.status_code == status.HTTP_400_BAD_REQUEST
    assert missing.json() == {"error": "userId and password required"}


def test_token_usage_lists_every_token(client: TestClient, issue_token: Callable) -> None:
    first = issue_token(client)
    issue_token(client)
    client.post("/api/login", json={"token": first})
    response = client.post("/api/token/usage", json={"userId": "alice", "password": "secret1"})
    assert response.status_code == status.HTTP_200_OK
    usage = response.json()["usage"]
    assert len(usage) == 2
    assert all(entry["token"].startswith("hmac$") for entry in usage)
    assert all("createdAt" in entry and "lastSeenAt" in entry for entry in usage)


def test_token_login(client: TestClient, issue_token: Callable) -> None:
    token = issue_token(client)
    pinned = client.post("/api/login", json={"userId": "alice", "token": token})
    assert pinned.json() == {"ok": True, "userId": "alice", "token": token, "displayName": "alice"}
    scanned = client.post("/api/login", json={"token": token})
    assert scanned.json()["userId"] == "alice"
    assert client.post("/api/login", json={"userId": "bob", "token": token}).status_code == 401
    missing = client.post("/api/login", json={"token": "  "})
    assert missing.status_code == status.HTTP_400_BAD_REQUEST
    assert missing.json() == {"error": "token required"}


def test_password_routes_are_rate_limited(make_client: Callable[..., TestClient]) -> None:
    client = make_client(rate_limit_enabled=True)
    for _ in range(30):
        assert client.post("/api/account/login", json={}).status_code == 400
    limited = client.post("/api/account/login", json={})
    assert limited.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert limited.json() == {"error": "rate limited"}
    assert client.post("/api/token", json={}).status_code == 400


def test_snapshot_write_failure_does_not_leak_paths(
    make_client: Callable[..., TestClient], register: Callable, tmp_path: Path
) -> None:
    blocker = tmp_path / "afile"
    blocker.write_text("x", encoding="utf-8")
    client = make_client(users_file=None, users_write_file=str(blocker / "sub" / "users.json"))
    response = register(client)
    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {"error": "failed to save users"}
    assert str(tmp_path) not in response.text
    assert client.app.state.relay.credentials.get("alice") is None


@pytest.mark.asyncio
async def test_password_checks_run_off_the_event_loop(test_settings: Settings, mocker) -> None:
    """A slow KDF must not stall other work scheduled on the loop."""
    state = RelayState.from_settings(test_settings)

    def slow_verify(user_id: str, password: str) -> None:
        time.sleep(0.2)
        return None

    mocker.patch.object(state.credentials, "verify_password", side_effect=slow_verify)
    gaps: list[float] = []

    async def ticker() -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        for _ in range(20):
            await asyncio.sleep(0.01)
            now = loop.time()
            gaps.append(now - last)
            last = now

    transport = httpx.ASGITransport(app=create_app(state=state))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        ticks = asyncio.create_task(ticker())
        response = await http.post(
            "/api/account/login", json={"userId": "alice", "password": "secret1"}
        )
        await ticks

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert max(gaps) < 0.15
