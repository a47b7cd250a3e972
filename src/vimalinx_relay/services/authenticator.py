"""Request authentication: credential resolution and signed-request checks."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Literal

from vimalinx_relay.core import security
from vimalinx_relay.core.clock import now_ms
from vimalinx_relay.core.errors import ConflictError, UnauthorizedError
from vimalinx_relay.models import UserRecord
from vimalinx_relay.models.message import make_device_key
from vimalinx_relay.services.credentials import CredentialStore
from vimalinx_relay.services.replay import ReplayProtectionService

logger = logging.getLogger(__name__)

TIMESTAMP_HEADER = "x-test-timestamp"
NONCE_HEADER = "x-test-nonce"
SIGNATURE_HEADER = "x-test-signature"


@dataclass(frozen=True)
class AuthMatch:
    """A verified user plus the normalized secret that authenticated them."""

    user: UserRecord
    secret: str
    kind: Literal["token", "password"]

    @property
    def device_key(self) -> str:
        return make_device_key(self.user.id, self.secret)


@dataclass(frozen=True)
class SignatureHeaders:
    timestamp: int | None
    nonce: str
    signature: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> SignatureHeaders:
        raw_timestamp = (headers.get(TIMESTAMP_HEADER) or "").strip()
        try:
            timestamp: int | None = int(raw_timestamp)
        except ValueError:
            timestamp = None
        return cls(
            timestamp=timestamp,
            nonce=(headers.get(NONCE_HEADER) or "").strip(),
            signature=(headers.get(SIGNATURE_HEADER) or "").strip(),
        )


def build_signature_headers(secret: str, body: str, nonce: str, timestamp: int) -> dict[str, str]:
    """Headers that sign ``body`` for a peer verifying the same scheme."""
    return {
        TIMESTAMP_HEADER: str(timestamp),
        NONCE_HEADER: nonce,
        SIGNATURE_HEADER: security.create_signature(secret, timestamp, nonce, body),
    }


class RequestAuthenticator:
    """Resolves ``(userId, secret)`` pairs and enforces optional HMAC signing."""

    def __init__(
        self,
        credentials: CredentialStore,
        replay: ReplayProtectionService,
        *,
        hmac_secret: str | None = None,
        signature_required: bool = False,
        signature_ttl_ms: int = 300_000,
        server_token: str | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.credentials = credentials
        self.replay = replay
        self.hmac_secret = hmac_secret
        self.signature_required = signature_required
        self.signature_ttl_ms = signature_ttl_ms
        self.server_token = server_token
        self._clock = clock

    def resolve(
        self,
        user_id: str | None,
        secret: str | None,
        *,
        allow_password: bool = False,
    ) -> AuthMatch | None:
        """Match by token for the named user, then password, then an id-less token scan."""
        secret = security.normalize_secret(secret)
        if secret is None:
            return None
        token_hash = self.credentials.hasher.hash_presented(secret)
        user_id = (user_id or "").strip()
        if user_id:
            user = self.credentials.verify_token(secret, user_id)
            if user is not None and token_hash:
                return AuthMatch(user=user, secret=token_hash, kind="token")
            if allow_password:
                user = self.credentials.verify_password(user_id, secret)
                if user is not None:
                    return AuthMatch(user=user, secret=secret, kind="password")
        user = self.credentials.verify_token(secret)
        if user is not None and token_hash:
            return AuthMatch(user=user, secret=token_hash, kind="token")
        return None

    def require(
        self,
        user_id: str | None,
        secret: str | None,
        *,
        allow_password: bool = False,
    ) -> AuthMatch:
        match = self.resolve(user_id, secret, allow_password=allow_password)
        if match is None:
            raise UnauthorizedError()
        return match

    def is_server_token(self, token: str | None) -> bool:
        if not self.server_token or not token:
            return False
        return hmac.compare_digest(self.server_token.encode("utf-8"), token.encode("utf-8"))

    def is_authorized_sender(self, bearer: str | None, owner: UserRecord | None) -> bool:
        """Accept the server token, or a token belonging to the owning user."""
        if self.is_server_token(bearer):
            return True
        return owner is not None and owner.has_token(self.credentials.hasher.hash_presented(bearer))

    def verify_signed_request(self, headers: SignatureHeaders, body: str, scope: str) -> None:
        """Enforce the request signature when signing is required.

        Checks run in order: headers present, timestamp inside the TTL, HMAC
        valid, nonce unseen within ``scope``.

        Raises:
            UnauthorizedError: Missing headers, stale timestamp or bad signature.
            ConflictError: The nonce was already used inside the window.
        """
        if not self.signature_required:
            return
        if not self.hmac_secret:
            raise UnauthorizedError("missing HMAC secret")
        if not headers.timestamp or not headers.nonce or not headers.signature:
            raise UnauthorizedError("missing signature headers")
        now = self._clock()
        if abs(now - headers.timestamp) > self.signature_ttl_ms:
            raise UnauthorizedError("stale signature")
        if not security.verify_signature(
            self.hmac_secret, headers.timestamp, headers.nonce, body, headers.signature
        ):
            raise UnauthorizedError("invalid signature")
        if not self.replay.check_and_store(scope, headers.nonce, now, self.signature_ttl_ms):
            logger.warning("Rejected replayed signature nonce for scope %s", scope.split(":")[0])
            raise ConflictError("replay detected")
