"""Device transports: the SSE stream and the inbound long-poll."""

from __future__ import annotations

import asyncio
import re
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from vimalinx_relay.api.dependencies import (
    StateDep,
    bearer_token,
    enforce_ip_allowlist,
    signature_headers,
    user_id_header,
)
from vimalinx_relay.core.settings import Settings
from vimalinx_relay.services.channels import stream_events

router = APIRouter(prefix="/api", tags=["transport"], dependencies=[Depends(enforce_ip_allowlist)])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

UserIdQuery = Annotated[str | None, Query(alias="userId")]
TokenQuery = Annotated[str | None, Query()]


def parse_leading_int(raw: str | None) -> int | None:
    """Parse the integer prefix of ``raw`` (``"250ms"`` gives 250); None if there is none."""
    if raw is None:
        return None
    match = _LEADING_INT.match(raw)
    return int(match.group(1)) if match else None


def poll_wait_seconds(raw: str | None, settings: Settings) -> float:
    """Clamp a ``waitMs`` value to ``[0, poll_max_wait_ms]``, defaulting when unparsable."""
    parsed = parse_leading_int(raw)
    if parsed is None:
        wait_ms = settings.poll_default_wait_ms
    else:
        wait_ms = max(0, min(parsed, settings.poll_max_wait_ms))
    return wait_ms / 1000


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


@router.get("/stream")
async def open_stream(
    request: Request,
    state: StateDep,
    user_id: UserIdQuery = None,
    token: TokenQuery = None,
    last_event_id: Annotated[str | None, Query(alias="lastEventId")] = None,
) -> StreamingResponse:
    """Open the SSE stream for the authenticated device line.

    The replay cursor comes from ``lastEventId`` or the ``Last-Event-ID``
    header; buffered events newer than it are sent before live ones.
    """
    match = state.authenticator.require(
        user_id or user_id_header(request),
        bearer_token(request) or token,
    )
    raw_cursor = last_event_id if last_event_id is not None else request.headers.get("last-event-id")
    state.credentials.record_usage(match.user, match.secret, stream_connect=True)
    return StreamingResponse(
        stream_events(
            state.channels,
            match.device_key,
            state.settings.heartbeat_seconds,
            last_event_id=parse_leading_int(raw_cursor),
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/poll")
async def poll_messages(
    request: Request,
    state: StateDep,
    user_id: UserIdQuery = None,
    token: TokenQuery = None,
    wait_ms: Annotated[str | None, Query(alias="waitMs")] = None,
) -> dict[str, Any]:
    """Long-poll for inbound messages queued on this device line.

    Returns as soon as messages are available, or with an empty list once
    ``waitMs`` elapses. Messages picked up by a poll whose client already
    disconnected go back to the head of the queue.
    """
    match = state.authenticator.require(
        user_id or user_id_header(request),
        bearer_token(request) or token,
    )
    state.credentials.record_usage(match.user, match.secret)
    state.authenticator.verify_signed_request(
        signature_headers(request), "", f"poll:{match.user.id}"
    )

    device_key = match.device_key
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        messages = await state.mailbox.wait_for_messages(
            device_key,
            poll_wait_seconds(wait_ms, state.settings),
            cancelled=watcher,
        )
    finally:
        disconnected = watcher.done() and not watcher.cancelled()
        watcher.cancel()
    if disconnected and messages:
        state.mailbox.requeue(device_key, messages)
        messages = []
    return {"ok": True, "messages": [message.to_dict() for message in messages]}
