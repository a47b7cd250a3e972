# tests/conftest.py
from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from vimalinx_relay.core.security import ScryptParams, TokenHasher
from vimalinx_relay.core.settings import Settings
from vimalinx_relay.main import create_app
from vimalinx_relay.services.credentials import CredentialStore
from vimalinx_relay.services.gateway import GatewayClient
from vimalinx_relay.services.persistence import UsersSnapshotFile
from vimalinx_relay.services.state import RelayState

# Low-cost scrypt parameters for tests.
TEST_SCRYPT = ScryptParams(n=1024, r=8, p=1, key_len=32)
TEST_SECRET_KEY = "test-secret-key-0123456789"
SERVER_TOKEN = "server-token-xyz"


@pytest.fixture()
def users_path(tmp_path: Path) -> Path:
    return tmp_path / "users.json"


@pytest.fixture()
def settings_factory(users_path: Path) -> Callable[..., Settings]:
    """Build settings isolated from the environment, with low scrypt cost."""

    def _build(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "users_file": str(users_path),
            "secret_key": TEST_SECRET_KEY,
            "scrypt_n": TEST_SCRYPT.n,
            "scrypt_r": TEST_SCRYPT.r,
            "scrypt_p": TEST_SCRYPT.p,
            "scrypt_key_len": TEST_SCRYPT.key_len,
            "save_debounce_seconds": 0.01,
            "rate_limit_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _build


@pytest.fixture()
def test_settings(settings_factory: Callable[..., Settings]) -> Settings:
    return settings_factory()


@pytest.fixture()
def credential_store(users_path: Path) -> CredentialStore:
    """A store with token hashing enabled, writing to a temporary users file."""
    return CredentialStore(
        hasher=TokenHasher(TEST_SECRET_KEY),
        snapshot=UsersSnapshotFile(str(users_path), str(users_path)),
        scrypt=TEST_SCRYPT,
    )


@pytest.fixture()
def make_client(settings_factory: Callable[..., Settings]) -> Iterator[Callable[..., TestClient]]:
    """Start relay apps on demand; each one is shut down after the test."""
    started: list[TestClient] = []

    def _make(
        *,
        state: RelayState | None = None,
        gateway_transport: httpx.MockTransport | None = None,
        **overrides: Any,
    ) -> TestClient:
        if state is None:
            settings = settings_factory(**overrides)
            gateway = None
            if gateway_transport is not None:
                gateway = GatewayClient(
                    default_url=settings.gateway_url,
                    default_token=settings.gateway_token,
                    server_token=settings.server_token,
                    hmac_secret=settings.hmac_secret,
                    transport=gateway_transport,
                )
            state = RelayState.from_settings(settings, gateway=gateway)
        test_client = TestClient(create_app(state=state), base_url="http://test")
        test_client.__enter__()
        started.append(test_client)
        return test_client

    yield _make
    for test_client in reversed(started):
        test_client.__exit__(None, None, None)


@pytest.fixture()
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


@pytest.fixture()
def register() -> Callable[..., httpx.Response]:
    def _register(
        client: TestClient,
        user_id: str = "alice",
        password: str = "secret1",
        **extra: Any,
    ) -> httpx.Response:
        headers = extra.pop("headers", None)
        return client.post(
            "/api/register",
            json={"userId": user_id, "password": password, **extra},
            headers=headers,
        )

    return _register


@pytest.fixture()
def issue_token(register: Callable[..., httpx.Response]) -> Callable[..., str]:
    """Register a user (if needed) and return a freshly issued raw token."""

    def _issue(client: TestClient, user_id: str = "alice", password: str = "secret1") -> str:
        state: RelayState = client.app.state.relay  # type: ignore[attr-defined]
        if state.credentials.get(user_id) is None:
            response = register(client, user_id, password)
            assert response.status_code == 200, response.text
        response = client.post("/api/token", json={"userId": user_id, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _issue


@pytest.fixture()
def users_file_writer(users_path: Path) -> Callable[[list[dict[str, Any]]], Path]:
    def _write(users: list[dict[str, Any]]) -> Path:
        users_path.write_text(json.dumps({"users": users}), encoding="utf-8")
        return users_path

    return _write
