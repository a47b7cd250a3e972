"""Credential store: user records, token grants and usage bookkeeping."""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable, Iterable
from threading import Lock
from typing import Any

from vimalinx_relay.core import security
from vimalinx_relay.core.clock import now_ms
from vimalinx_relay.core.errors import (
    ConflictError,
    ForbiddenError,
    UnauthorizedError,
    ValidationFailedError,
)
from vimalinx_relay.core.security import ScryptParams, TokenHasher
from vimalinx_relay.models import TokenUsage, UserRecord
from vimalinx_relay.services.persistence import (
    DebouncedSaver,
    SnapshotError,
    UsersSnapshotFile,
    parse_users_document,
)

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r"^[a-z0-9_-]{2,32}$")
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 64

__all__ = [
    "CredentialStore",
    "normalize_password",
    "normalize_user_id",
]


def normalize_user_id(value: str | None) -> str | None:
    """Lowercase and validate a user id; None when it is not acceptable."""
    if not value or not value.strip():
        return None
    normalized = value.strip().lower()
    return normalized if USER_ID_PATTERN.match(normalized) else None


def normalize_password(value: str | None) -> str | None:
    """Trim a password and enforce the length bounds."""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    if not MIN_PASSWORD_LENGTH <= len(trimmed) <= MAX_PASSWORD_LENGTH:
        return None
    return trimmed


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class CredentialStore:
    """In-memory map of users backed by a debounced snapshot file.

    All mutations happen under one lock, so usage counters never lose an
    update even when handlers run on worker threads.
    """

    def __init__(
        self,
        *,
        hasher: TokenHasher,
        snapshot: UsersSnapshotFile,
        scrypt: ScryptParams | None = None,
        invite_codes: Iterable[str] = (),
        save_debounce_seconds: float = 1.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.hasher = hasher
        self.snapshot = snapshot
        self.scrypt = scrypt or ScryptParams()
        self.invite_codes = [code for code in invite_codes if code]
        self.users: dict[str, UserRecord] = {}
        self.migrated = False
        self._clock = clock
        self._lock = Lock()
        self._saver = DebouncedSaver(
            self.save,
            save_debounce_seconds,
            enabled=snapshot.write_path is not None,
        )

    # --- Loading ----------------------------------------------------------------------
    def normalize_record(self, entry: dict[str, Any]) -> UserRecord | None:
        """Turn a snapshot entry into a record, upgrading legacy plaintext secrets."""
        user_id = _clean(entry.get("id"))
        if not user_id:
            return None
        migrated = False

        listed = entry.get("tokens")
        raw_tokens = [entry.get("token"), *(listed if isinstance(listed, list) else [])]
        tokens: list[str] = []
        for raw in raw_tokens:
            token = _clean(raw)
            if token is None:
                continue
            if self.hasher.enabled and not self.hasher.is_hashed(token):
                migrated = True
            normalized = self.hasher.normalize(token)
            if normalized and normalized not in tokens:
                tokens.append(normalized)

        password_hash = _clean(entry.get("passwordHash"))
        password = _clean(entry.get("password"))
        if not password_hash and password:
            password_hash = security.hash_password(password, self.scrypt)
            migrated = True

        usage: dict[str, TokenUsage] = {}
        raw_usage = entry.get("tokenUsage")
        if isinstance(raw_usage, dict):
            for key, value in raw_usage.items():
                value = value if isinstance(value, dict) else {}
                token = self.hasher.normalize(_clean(value.get("token")) or key)
                if token:
                    usage[token] = TokenUsage.from_dict(token, value)

        record = UserRecord(
            id=user_id,
            password_hash=password_hash,
            tokens=tokens,
            token_usage=usage,
            display_name=_clean(entry.get("displayName")),
            gateway_url=_clean(entry.get("gatewayUrl")),
            gateway_token=_clean(entry.get("gatewayToken")),
        )
        for token in tokens:
            record.usage_for(token)
        if migrated:
            self.migrated = True
        return record

    def add_user(self, entry: dict[str, Any]) -> UserRecord | None:
        record = self.normalize_record(entry)
        if record is None:
            return None
        with self._lock:
            self.users[record.id] = record
        return record

    def load(
        self,
        inline: str | None = None,
        default_user: tuple[str, str] | None = None,
    ) -> None:
        """Merge inline users, the users file and the default user, in that order."""
        if inline:
            for entry in parse_users_document(inline, "inline users"):
                self.add_user(entry)
        for entry in self.snapshot.load():
            self.add_user(entry)
        if default_user is not None:
            user_id, token = default_user
            self.add_user({"id": user_id, "token": token})
        if self.migrated:
            logger.info("Upgraded legacy plaintext credentials; scheduling users save")
            self.schedule_save()

    # --- Lookups ----------------------------------------------------------------------
    def get(self, user_id: str | None) -> UserRecord | None:
        if not user_id:
            return None
        return self.users.get(user_id)

    def verify_password(self, user_id: str | None, password: str | None) -> UserRecord | None:
        user = self.get(user_id)
        if user is None or not password or not user.password_hash:
            return None
        return user if security.verify_password(password, user.password_hash) else None

    def verify_token(self, token: str | None, user_id: str | None = None) -> UserRecord | None:
        """Match a token against one user, or scan every user when no id is given."""
        token_hash = self.hasher.hash_presented(token)
        if token_hash is None:
            return None
        if user_id:
            user = self.get(user_id)
            return user if user is not None and user.has_token(token_hash) else None
        for user in list(self.users.values()):
            if user.has_token(token_hash):
                return user
        return None

    def is_token_in_use(self, token: str) -> bool:
        token_hash = self.hasher.hash_presented(token)
        return any(user.has_token(token_hash) for user in list(self.users.values()))

    def is_invite_valid(self, code: str | None) -> bool:
        if not self.invite_codes:
            return True
        trimmed = (code or "").strip()
        return bool(trimmed) and trimmed in self.invite_codes

    # --- Mutations --------------------------------------------------------------------
    def register(
        self,
        user_id: str | None,
        password: str | None,
        *,
        display_name: str | None = None,
        invite_code: str | None = None,
        invite_exempt: bool = False,
    ) -> UserRecord:
        """Create a user and persist the snapshot before exposing the record.

        Raises:
            ForbiddenError: The invite code is not on the allowlist.
            ValidationFailedError: The user id or password is malformed.
            ConflictError: The user id is taken.
            SnapshotError: The snapshot could not be written; nothing is added.
        """
        if not invite_exempt and not self.is_invite_valid(invite_code):
            raise ForbiddenError("invalid invite code")
        normalized_id = normalize_user_id(user_id)
        if normalized_id is None:
            raise ValidationFailedError("userId required")
        if normalized_id in self.users:
            raise ConflictError("user exists")
        normalized_password = normalize_password(password)
        if normalized_password is None:
            raise ValidationFailedError("password required")

        record = UserRecord(
            id=normalized_id,
            password_hash=security.hash_password(normalized_password, self.scrypt),
            display_name=_clean(display_name),
        )
        with self._lock:
            if record.id in self.users:
                raise ConflictError("user exists")
            self.snapshot.save([*self.users.values(), record])
            self.users[record.id] = record
        return record

    def issue_token(self, user_id: str | None, password: str | None) -> tuple[UserRecord, str]:
        """Grant a new bearer token unique across all users.

        The raw token is returned once; only its canonical form is stored.
        If the snapshot cannot be written the grant is rolled back.
        """
        user = self.verify_password(user_id, password)
        if user is None:
            raise UnauthorizedError()
        with self._lock:
            token = security.generate_token()
            while self.is_token_in_use(token):
                token = security.generate_token()
            token_hash = self.hasher.hash(token)
            now = self._clock()
            user.tokens.append(token_hash)
            usage = user.usage_for(token_hash)
            usage.created_at = usage.created_at or now
            usage.last_seen_at = now
            try:
                self.snapshot.save(self.users.values())
            except SnapshotError:
                user.tokens.remove(token_hash)
                user.token_usage.pop(token_hash, None)
                raise
        return user, token

    def record_usage(
        self,
        user: UserRecord,
        token: str,
        *,
        stream_connect: bool = False,
        inbound: bool = False,
        outbound: bool = False,
    ) -> TokenUsage | None:
        """Bump counters for a token and schedule a background save."""
        token_hash = self.hasher.normalize(token)
        if token_hash is None:
            return None
        now = self._clock()
        with self._lock:
            usage = user.usage_for(token_hash)
            if usage.created_at is None:
                usage.created_at = now
            usage.last_seen_at = now
            if stream_connect:
                usage.stream_connects = (usage.stream_connects or 0) + 1
            if inbound:
                usage.inbound_count = (usage.inbound_count or 0) + 1
                usage.last_inbound_at = now
            if outbound:
                usage.outbound_count = (usage.outbound_count or 0) + 1
                usage.last_outbound_at = now
        self.schedule_save()
        return usage

    # --- Persistence ------------------------------------------------------------------
    def save(self) -> None:
        """Write a consistent copy of every user; safe to call from a worker thread."""
        with self._lock:
            users = [copy.deepcopy(user) for user in self.users.values()]
        self.snapshot.save(users)

    def schedule_save(self) -> None:
        self._saver.schedule()

    @property
    def save_pending(self) -> bool:
        return self._saver.pending

    def start(self) -> None:
        self._saver.start()

    async def stop(self) -> None:
        await self._saver.stop()
