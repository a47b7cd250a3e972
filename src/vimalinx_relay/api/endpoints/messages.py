# src/vimalinx_relay/api/endpoints/messages.py
"""Message endpoints: client messages in, agent replies out."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from vimalinx_relay.api.dependencies import (
    JsonBodyDep,
    StateDep,
    bearer_token,
    enforce_ip_allowlist,
    parse_body,
    signature_headers,
    user_id_header,
)
from vimalinx_relay.core.clock import now_ms
from vimalinx_relay.core.errors import (
    NotFoundError,
    UnauthorizedError,
    UpstreamFailureError,
    ValidationFailedError,
)
from vimalinx_relay.models import InboundMessage, UserRecord
from vimalinx_relay.models.message import token_from_device_key
from vimalinx_relay.schemas.messages import ClientMessageRequest, SendRequest
from vimalinx_relay.services.chat_owners import default_chat_id, extract_user_id
from vimalinx_relay.services.gateway import GatewayError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"], dependencies=[Depends(enforce_ip_allowlist)])


def _trimmed(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def build_inbound_message(payload: ClientMessageRequest, user: UserRecord) -> InboundMessage:
    """Fill in chat and sender defaults for a message sent by ``user``."""
    return InboundMessage(
        id=payload.id.strip() if payload.id is not None else None,
        chat_id=default_chat_id(user.id, payload.chat_id),
        chat_name=_trimmed(payload.chat_name),
        chat_type=payload.chat_type or "dm",
        sender_id=user.id,
        sender_name=_trimmed(payload.sender_name) or user.label,
        text=payload.text or "",
        mentioned=bool(payload.mentioned),
        timestamp=now_ms(),
    )


@router.post("/api/message")
async def post_client_message(request: Request, state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Accept a client message and hand it to the agent side.

    In ``poll`` mode the message is queued for the device line's long-poll;
    in ``webhook`` mode it is forwarded to the gateway once, and a failed
    forward is reported as 502.
    """
    payload = parse_body(ClientMessageRequest, body)
    secret = payload.token or bearer_token(request)
    if not secret or not payload.text:
        raise ValidationFailedError("token and text required")
    match = state.authenticator.require(payload.user_id or user_id_header(request), secret)
    state.credentials.record_usage(match.user, match.secret, inbound=True)

    message = build_inbound_message(payload, match.user)
    state.chat_owners.learn(message.chat_id, match.user.id, match.device_key)

    if state.settings.inbound_mode == "webhook":
        try:
            await state.gateway.forward(message, match.user)
        except GatewayError as err:
            raise UpstreamFailureError(str(err)) from err
        return {"ok": True, "delivered": True}

    state.mailbox.enqueue(match.device_key, message)
    return {"ok": True, "queued": True}


@router.post("/send")
async def send_to_device(request: Request, state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Push an agent reply to the device line that owns ``chatId``.

    The caller must present the server token or a token of the owning user,
    and sign the request when signing is enabled.
    """
    payload = parse_body(SendRequest, body)
    chat_id = payload.chat_id
    if not chat_id or not payload.text:
        raise ValidationFailedError("chatId and text required")

    owner = state.chat_owners.resolve(chat_id)
    if owner is None:
        if extract_user_id(chat_id) is None:
            raise ValidationFailedError("invalid chatId")
        raise NotFoundError("unknown user")

    state.authenticator.verify_signed_request(
        signature_headers(request), body.raw, f"send:{owner.user.id}"
    )
    if not state.authenticator.is_authorized_sender(bearer_token(request), owner.user):
        raise UnauthorizedError()

    token = token_from_device_key(owner.device_key)
    if token and owner.user.has_token(state.credentials.hasher.normalize(token)):
        state.credentials.record_usage(owner.user, token, outbound=True)

    entry = state.channels.send(
        owner.device_key,
        {
            "type": "message",
            "chatId": chat_id,
            "text": payload.text,
            "replyToId": payload.reply_to_id,
            "receivedAt": now_ms(),
        },
    )
    logger.debug("Queued reply event %s for user %s", entry.event_id, owner.user.id)
    return {"ok": True, "delivered": True}
