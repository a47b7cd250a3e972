# src/vimalinx_relay/schemas/messages.py
"""Message request schemas for the inbound and outbound routes."""

from typing import Literal

from pydantic import Field

from .common import RelayModel


class ClientMessageRequest(RelayModel):
    """Schema for a client message travelling towards the agent."""

    user_id: str | None = None
    token: str | None = None
    text: str | None = None
    chat_id: str | None = Field(None, description="Defaults to the sender's direct chat")
    chat_type: Literal["dm", "group"] | None = None
    sender_name: str | None = None
    chat_name: str | None = None
    mentioned: bool | None = None
    id: str | None = Field(None, description="Client-side message id, echoed to the agent")


class SendRequest(RelayModel):
    """Schema for an agent reply pushed to the owning device."""

    chat_id: str | None = None
    text: str | None = None
    reply_to_id: str | int | None = None
    account_id: str | None = None
