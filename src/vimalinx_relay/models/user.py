# src/vimalinx_relay/models/user.py
"""User and token usage records held by the credential store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_USAGE_FIELDS = (
    ("created_at", "createdAt"),
    ("last_seen_at", "lastSeenAt"),
    ("stream_connects", "streamConnects"),
    ("inbound_count", "inboundCount"),
    ("outbound_count", "outboundCount"),
    ("last_inbound_at", "lastInboundAt"),
    ("last_outbound_at", "lastOutboundAt"),
)


def _usage_number(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return max(0, int(value))


@dataclass
class TokenUsage:
    """Per-token counters; counts only grow, timestamps are last-write-wins."""

    token: str
    created_at: int | None = None
    last_seen_at: int | None = None
    stream_connects: int | None = None
    inbound_count: int | None = None
    outbound_count: int | None = None
    last_inbound_at: int | None = None
    last_outbound_at: int | None = None

    @classmethod
    def from_dict(cls, token: str, raw: dict[str, Any] | None) -> TokenUsage:
        """Build usage from its snapshot form, dropping invalid numbers."""
        raw = raw or {}
        values = {attr: _usage_number(raw.get(key)) for attr, key in _USAGE_FIELDS}
        return cls(token=token, **values)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"token": self.token}
        for attr, key in _USAGE_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data


@dataclass
class UserRecord:
    """A registered user.

    ``tokens`` holds canonical token forms in grant order; the first entry is
    the primary token, which only matters for display and chat routing.
    """

    id: str
    password_hash: str | None = None
    tokens: list[str] = field(default_factory=list)
    token_usage: dict[str, TokenUsage] = field(default_factory=dict)
    display_name: str | None = None
    gateway_url: str | None = None
    gateway_token: str | None = None

    @property
    def primary_token(self) -> str | None:
        return self.tokens[0] if self.tokens else None

    @property
    def label(self) -> str:
        """Name shown to clients: display name, else the user id."""
        return self.display_name or self.id

    def has_token(self, token_hash: str | None) -> bool:
        return bool(token_hash) and token_hash in self.tokens

    def usage_for(self, token_hash: str) -> TokenUsage:
        """Return the usage entry for a token, creating it lazily."""
        usage = self.token_usage.get(token_hash)
        if usage is None:
            usage = TokenUsage(token=token_hash)
            self.token_usage[token_hash] = usage
        return usage

    def usage_list(self) -> list[TokenUsage]:
        """Usage for every token in grant order."""
        return [self.usage_for(token) for token in self.tokens]

    def to_dict(self) -> dict[str, Any]:
        """Snapshot form; plaintext passwords are never written."""
        data: dict[str, Any] = {"id": self.id}
        if self.primary_token:
            data["token"] = self.primary_token
        data["tokens"] = list(self.tokens)
        if self.password_hash:
            data["passwordHash"] = self.password_hash
        if self.display_name:
            data["displayName"] = self.display_name
        if self.gateway_url:
            data["gatewayUrl"] = self.gateway_url
        if self.gateway_token:
            data["gatewayToken"] = self.gateway_token
        data["tokenUsage"] = {usage.token: usage.to_dict() for usage in self.usage_list()}
        return data
