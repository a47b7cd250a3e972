"""In-memory records for the relay server."""

from .message import ChatOwner, InboundMessage, OutboxEntry
from .user import TokenUsage, UserRecord

__all__ = [
    "ChatOwner", "InboundMessage", "OutboxEntry",
    "TokenUsage", "UserRecord",
]
