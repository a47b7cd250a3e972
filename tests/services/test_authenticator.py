# tests/services/test_authenticator.py
"""Tests for credential resolution and signed-request verification."""

from __future__ import annotations

import pytest

from vimalinx_relay.core.errors import ConflictError, UnauthorizedError
from vimalinx_relay.core.security import create_signature
from vimalinx_relay.services.authenticator import (
    RequestAuthenticator,
    SignatureHeaders,
    build_signature_headers,
)
from vimalinx_relay.services.credentials import CredentialStore
from vimalinx_relay.services.replay import ReplayProtectionService

SECRET = "hmac-secret"
NOW = 1_700_000_000_000
TTL = 300_000


@pytest.fixture()
def authenticator(credential_store: CredentialStore) -> RequestAuthenticator:
    return RequestAuthenticator(
        credential_store,
        ReplayProtectionService(),
        hmac_secret=SECRET,
        signature_required=True,
        signature_ttl_ms=TTL,
        server_token="srv",
        clock=lambda: NOW,
    )


def _headers(body: str, nonce: str = "n1", timestamp: int = NOW) -> SignatureHeaders:
    return SignatureHeaders.from_headers(build_signature_headers(SECRET, body, nonce, timestamp))


def test_resolve_by_token_with_and_without_user_id(
    authenticator: RequestAuthenticator, credential_store: CredentialStore
) -> None:
    credential_store.register("alice", "secret1")
    user, token = credential_store.issue_token("alice", "secret1")
    by_id = authenticator.resolve("alice", token)
    assert by_id is not None and by_id.user is user and by_id.kind == "token"
    assert by_id.secret == credential_store.hasher.normalize(token)
    assert by_id.device_key == f"alice:{by_id.secret}"
    scanned = authenticator.resolve(None, f"  {token} ")
    assert scanned is not None and scanned.user is user
    assert authenticator.resolve("alice", "nope") is None
    assert authenticator.resolve("alice", "   ") is None


def test_stored_token_hash_is_not_accepted_as_a_credential(
    authenticator: RequestAuthenticator, credential_store: CredentialStore
) -> None:
    credential_store.register("alice", "secret1")
    user, token = credential_store.issue_token("alice", "secret1")
    (stored,) = user.tokens
    assert stored.startswith("hmac$")
    assert authenticator.resolve("alice", stored) is None
    assert authenticator.resolve(None, stored) is None
    assert authenticator.is_authorized_sender(stored, user) is False
    assert authenticator.is_authorized_sender(token, user) is True
    assert credential_store.verify_token(stored, "alice") is None


def test_password_match_only_when_allowed(
    authenticator: RequestAuthenticator, credential_store: CredentialStore
) -> None:
    credential_store.register("alice", "secret1")
    assert authenticator.resolve("alice", "secret1") is None
    match = authenticator.resolve("alice", "secret1", allow_password=True)
    assert match is not None and match.kind == "password"


def test_require_raises_unauthorized(authenticator: RequestAuthenticator) -> None:
    with pytest.raises(UnauthorizedError):
        authenticator.require("ghost", "token")


def test_signed_request_accepted_once(authenticator: RequestAuthenticator) -> None:
    authenticator.verify_signed_request(_headers("{}"), "{}", "send:alice")
    with pytest.raises(ConflictError, match="replay"):
        authenticator.verify_signed_request(_headers("{}"), "{}", "send:alice")
    authenticator.verify_signed_request(_headers("{}"), "{}", "send:bob")


def test_stale_timestamp_checked_before_nonce(authenticator: RequestAuthenticator) -> None:
    stale = _headers("{}", nonce="n-stale", timestamp=NOW - TTL - 1)
    with pytest.raises(UnauthorizedError, match="stale"):
        authenticator.verify_signed_request(stale, "{}", "send:alice")
    with pytest.raises(UnauthorizedError, match="stale"):
        authenticator.verify_signed_request(stale, "{}", "send:alice")


def test_invalid_signature_does_not_burn_the_nonce(authenticator: RequestAuthenticator) -> None:
    forged = SignatureHeaders(timestamp=NOW, nonce="n2", signature="00" * 32)
    with pytest.raises(UnauthorizedError, match="invalid signature"):
        authenticator.verify_signed_request(forged, "{}", "poll:alice")
    authenticator.verify_signed_request(_headers("{}", nonce="n2"), "{}", "poll:alice")


def test_body_is_covered_by_signature(authenticator: RequestAuthenticator) -> None:
    headers = _headers('{"text":"a"}')
    with pytest.raises(UnauthorizedError):
        authenticator.verify_signed_request(headers, '{"text":"b"}', "send:alice")


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"x-test-timestamp": "abc", "x-test-nonce": "n", "x-test-signature": "s"},
        {"x-test-timestamp": str(NOW), "x-test-signature": "s"},
    ],
)
def test_missing_headers_are_unauthorized(authenticator: RequestAuthenticator, raw: dict) -> None:
    with pytest.raises(UnauthorizedError, match="missing"):
        authenticator.verify_signed_request(SignatureHeaders.from_headers(raw), "", "poll:alice")


def test_signing_disabled_skips_checks(credential_store: CredentialStore) -> None:
    relaxed = RequestAuthenticator(credential_store, ReplayProtectionService())
    relaxed.verify_signed_request(SignatureHeaders.from_headers({}), "", "poll:alice")


def test_build_signature_headers_matches_scheme() -> None:
    headers = build_signature_headers(SECRET, "body", "n", 5)
    assert headers["x-test-signature"] == create_signature(SECRET, 5, "n", "body")


def test_authorized_sender(authenticator: RequestAuthenticator, credential_store: CredentialStore) -> None:
    credential_store.register("alice", "secret1")
    user, token = credential_store.issue_token("alice", "secret1")
    assert authenticator.is_authorized_sender("srv", None)
    assert authenticator.is_authorized_sender(token, user)
    assert not authenticator.is_authorized_sender("nope", user)
    assert not authenticator.is_authorized_sender(None, user)
