"""Shared API dependencies: state access, raw JSON bodies and request guards."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, TypeVar

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from vimalinx_relay.core.errors import (
    ForbiddenError,
    PayloadTooLargeError,
    RateLimitedError,
    UnsupportedMediaTypeError,
    ValidationFailedError,
)
from vimalinx_relay.services.authenticator import SignatureHeaders
from vimalinx_relay.services.state import RelayState

ModelT = TypeVar("ModelT", bound=BaseModel)

USER_ID_HEADER = "x-test-user"


def get_state(request: Request) -> RelayState:
    """Return the relay state attached to the running application."""
    return request.app.state.relay


StateDep = Annotated[RelayState, Depends(get_state)]


def get_client_ip(request: Request, state: StateDep) -> str:
    """Resolve the caller's address, honouring ``X-Forwarded-For`` behind a trusted proxy."""
    if state.settings.trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


ClientIpDep = Annotated[str, Depends(get_client_ip)]


def enforce_ip_allowlist(state: StateDep, client_ip: ClientIpDep) -> None:
    """Reject callers outside ``RELAY_ALLOWED_IPS`` when an allowlist is configured."""
    allowed = state.settings.allowed_ips
    if allowed and client_ip not in allowed:
        raise ForbiddenError("forbidden")


def rate_limit(scope: str, limit: int, window_seconds: float) -> Callable[..., None]:
    """Build a dependency enforcing ``limit`` hits per window for each client IP."""

    def dependency(state: StateDep, client_ip: ClientIpDep) -> None:
        if not state.rate_limiter.hit(f"{scope}:{client_ip}", limit, window_seconds):
            raise RateLimitedError()

    return dependency


def bearer_token(request: Request) -> str | None:
    """Extract the token from an ``Authorization: Bearer`` header."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def user_id_header(request: Request) -> str | None:
    return request.headers.get(USER_ID_HEADER, "").strip() or None


def signature_headers(request: Request) -> SignatureHeaders:
    return SignatureHeaders.from_headers(request.headers)


@dataclass(frozen=True)
class JsonBody:
    """A request body as received plus its parsed JSON object."""

    raw: str
    data: dict[str, Any]


def _check_content_type(request: Request) -> None:
    content_type = request.headers.get("content-type")
    if content_type is None:
        return
    media_type = content_type.split(";")[0].strip().lower()
    if media_type != "application/json" and not media_type.endswith("+json"):
        raise UnsupportedMediaTypeError("content type must be application/json")


async def read_json_body(request: Request, state: StateDep) -> JsonBody:
    """Read the raw body under the size cap and parse it as a JSON object.

    The raw text is kept because signed routes verify the HMAC over the exact
    bytes the client sent.

    Raises:
        UnsupportedMediaTypeError: A non-JSON content type was declared.
        PayloadTooLargeError: The body exceeds ``max_body_bytes``.
        ValidationFailedError: The body is not a JSON object.
    """
    _check_content_type(request)
    limit = state.settings.max_body_bytes
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeError()

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise PayloadTooLargeError()
        chunks.append(chunk)

    try:
        raw = b"".join(chunks).decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValidationFailedError("invalid JSON") from err
    if not isinstance(data, dict):
        raise ValidationFailedError("invalid JSON")
    return JsonBody(raw=raw, data=data)


JsonBodyDep = Annotated[JsonBody, Depends(read_json_body)]


def parse_body(model: type[ModelT], body: JsonBody) -> ModelT:
    """Validate a parsed body against ``model``; type mismatches become 400 errors."""
    try:
        return model.model_validate(body.data)
    except ValidationError as err:
        first = err.errors()[0] if err.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationFailedError(f"invalid {location}" if location else "invalid request") from err
