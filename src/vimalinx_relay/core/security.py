"""Password, token and request-signature primitives.

Password hashes are self-describing (``scrypt$N$r$p$salt$hash``) so the cost
parameters can change without invalidating stored hashes. Tokens are keyed
with HMAC-SHA256 when a server secret key is configured; the resulting
``hmac$...`` string is the canonical form used everywhere else.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

TOKEN_HASH_PREFIX = "hmac$"
PASSWORD_HASH_SCHEME = "scrypt"
_PASSWORD_HASH_PARTS = 6
_SALT_BYTES = 16
_TOKEN_BYTES = 16


@dataclass(frozen=True)
class ScryptParams:
    """Cost parameters for newly created password hashes."""

    n: int = 16384
    r: int = 8
    p: int = 1
    key_len: int = 64


@dataclass(frozen=True)
class ParsedPasswordHash:
    n: int
    r: int
    p: int
    salt: str
    digest_hex: str


def _scrypt(salt: str, length: int, n: int, r: int, p: int) -> Scrypt:
    return Scrypt(salt=salt.encode("utf-8"), length=length, n=n, r=r, p=p)


def hash_password(password: str, params: ScryptParams | None = None) -> str:
    """Return a salted scrypt hash string embedding its own parameters."""
    params = params or ScryptParams()
    salt = secrets.token_hex(_SALT_BYTES)
    derived = _scrypt(salt, params.key_len, params.n, params.r, params.p).derive(
        password.encode("utf-8")
    )
    return f"{PASSWORD_HASH_SCHEME}${params.n}${params.r}${params.p}${salt}${derived.hex()}"


def parse_password_hash(raw: str) -> ParsedPasswordHash | None:
    """Split a stored hash into its components, or None if it is malformed."""
    parts = raw.split("$")
    if len(parts) != _PASSWORD_HASH_PARTS or parts[0] != PASSWORD_HASH_SCHEME:
        return None
    try:
        n, r, p = int(parts[1]), int(parts[2]), int(parts[3])
    except ValueError:
        return None
    salt, digest_hex = parts[4], parts[5]
    if not salt or not digest_hex:
        return None
    return ParsedPasswordHash(n=n, r=r, p=p, salt=salt, digest_hex=digest_hex)


def verify_password(password: str, raw_hash: str) -> bool:
    """Recompute the hash with the stored parameters and compare in constant time."""
    parsed = parse_password_hash(raw_hash)
    if parsed is None:
        return False
    try:
        expected = bytes.fromhex(parsed.digest_hex)
    except ValueError:
        return False
    try:
        kdf = _scrypt(parsed.salt, max(1, len(expected)), parsed.n, parsed.r, parsed.p)
        kdf.verify(password.encode("utf-8"), expected)
    except (InvalidKey, ValueError):
        return False
    return True


def generate_token() -> str:
    """Return a fresh random 128-bit token as 32 hex characters."""
    return secrets.token_hex(_TOKEN_BYTES)


def normalize_secret(value: str | None) -> str | None:
    """Trim a user-supplied secret; blank values become None."""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class TokenHasher:
    """Maps raw bearer tokens to their canonical stored form.

    With a secret key the canonical form is ``hmac$<hex>``. Without one the
    raw token itself is canonical, which is the weaker development mode.
    """

    def __init__(self, secret_key: str | None) -> None:
        self._secret_key = (secret_key or "").encode("utf-8")
        self.enabled = bool(secret_key)

    @staticmethod
    def is_hashed(value: str) -> bool:
        return value.startswith(TOKEN_HASH_PREFIX)

    def hash(self, token: str) -> str:
        if not self.enabled:
            return token
        digest = hmac.new(self._secret_key, token.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{TOKEN_HASH_PREFIX}{digest}"

    def hash_presented(self, value: str | None) -> str | None:
        """Canonical form of a token presented by a client.

        Unlike :meth:`normalize`, a value that already looks like a stored
        hash is hashed again, so a leaked snapshot cannot be replayed as
        bearer credentials.
        """
        token = normalize_secret(value)
        if token is None:
            return None
        return self.hash(token)

    def normalize(self, value: str | None) -> str | None:
        """Return the canonical form of a raw or already-hashed token."""
        token = normalize_secret(value)
        if token is None:
            return None
        if not self.enabled or self.is_hashed(token):
            return token
        return self.hash(token)


def create_signature(secret: str, timestamp: int, nonce: str, body: str) -> str:
    """Return the hex HMAC-SHA256 of ``timestamp.nonce.body``."""
    message = f"{timestamp}.{nonce}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: int, nonce: str, body: str, signature: str) -> bool:
    """Check a request signature in constant time."""
    expected = create_signature(secret, timestamp, nonce, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
