"""Message and routing records for the two delivery transports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

ChatType = Literal["dm", "group"]


@dataclass(frozen=True)
class InboundMessage:
    """A client message awaiting pickup by poll or gateway forwarding."""

    chat_id: str
    sender_id: str
    text: str
    timestamp: int
    chat_type: ChatType = "dm"
    sender_name: str | None = None
    chat_name: str | None = None
    mentioned: bool = False
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id is not None:
            data["id"] = self.id
        data["chatId"] = self.chat_id
        if self.chat_name is not None:
            data["chatName"] = self.chat_name
        data["chatType"] = self.chat_type
        data["senderId"] = self.sender_id
        if self.sender_name is not None:
            data["senderName"] = self.sender_name
        data["text"] = self.text
        data["mentioned"] = self.mentioned
        data["timestamp"] = self.timestamp
        return data


@dataclass(frozen=True)
class OutboxEntry:
    """One replayable SSE event for a device key."""

    event_id: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class ChatOwner:
    """The device line responsible for a chat id."""

    user_id: str
    device_key: str


def make_device_key(user_id: str, secret: str) -> str:
    """Compose the device key addressing one authenticated session line."""
    return f"{user_id}:{secret}"


def token_from_device_key(device_key: str) -> str | None:
    """Return the secret half of a device key, if any."""
    _, sep, secret = device_key.partition(":")
    secret = secret.strip()
    return secret if sep and secret else None
