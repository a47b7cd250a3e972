"""Routes outbound chat ids back to the device line that owns them."""

from __future__ import annotations

from dataclasses import dataclass

from vimalinx_relay.models import ChatOwner, UserRecord
from vimalinx_relay.models.message import make_device_key
from vimalinx_relay.services.credentials import CredentialStore

_CHAT_ID_PREFIXES = ("user:", "test:")


def default_chat_id(user_id: str, chat_id: str | None = None) -> str:
    """Return the trimmed chat id, or the ``user:<id>`` direct chat when absent."""
    if chat_id and chat_id.strip():
        return chat_id.strip()
    return f"user:{user_id}"


def extract_user_id(chat_id: str | None) -> str | None:
    """Derive a user id from ``user:``/``test:`` chat ids; other ids are returned as-is."""
    if not chat_id:
        return None
    trimmed = chat_id.strip()
    for prefix in _CHAT_ID_PREFIXES:
        if trimmed.startswith(prefix):
            return trimmed[len(prefix):].strip() or None
    return trimmed or None


@dataclass(frozen=True)
class ResolvedOwner:
    user: UserRecord
    device_key: str


class ChatOwnerResolver:
    """Learned ``chatId -> (userId, deviceKey)`` mappings with fallbacks.

    Resolution order: the learned mapping, then the primary token of the user
    named by the chat id, then the only registered user. It never invents
    identities.
    """

    def __init__(self, credentials: CredentialStore) -> None:
        self._credentials = credentials
        self._owners: dict[str, ChatOwner] = {}

    def learn(self, chat_id: str, user_id: str, device_key: str) -> None:
        self._owners[chat_id] = ChatOwner(user_id=user_id, device_key=device_key)

    def _primary_line(self, user: UserRecord) -> ResolvedOwner | None:
        token = user.primary_token
        if not token:
            return None
        return ResolvedOwner(user=user, device_key=make_device_key(user.id, token))

    def resolve(self, chat_id: str | None) -> ResolvedOwner | None:
        if not chat_id:
            return None
        mapped = self._owners.get(chat_id)
        if mapped is not None:
            user = self._credentials.get(mapped.user_id)
            if user is not None:
                return ResolvedOwner(user=user, device_key=mapped.device_key)

        direct = self._credentials.get(extract_user_id(chat_id))
        if direct is not None:
            owner = self._primary_line(direct)
            if owner is not None:
                return owner

        users = list(self._credentials.users.values())
        if len(users) == 1:
            return self._primary_line(users[0])
        return None
