# src/vimalinx_relay/api/endpoints/auth.py
"""Account registration, password login and token endpoints."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Request

from vimalinx_relay.api.dependencies import (
    JsonBodyDep,
    StateDep,
    bearer_token,
    enforce_ip_allowlist,
    parse_body,
    rate_limit,
)
from vimalinx_relay.core.errors import ForbiddenError, UnauthorizedError, ValidationFailedError
from vimalinx_relay.models import UserRecord
from vimalinx_relay.schemas.auth import CredentialsRequest, RegisterRequest, TokenLoginRequest
from vimalinx_relay.services.credentials import normalize_password, normalize_user_id
from vimalinx_relay.services.state import RelayState

router = APIRouter(prefix="/api", tags=["authentication"], dependencies=[Depends(enforce_ip_allowlist)])


def require_registration_open(state: StateDep) -> None:
    if not state.settings.allow_registration:
        raise ForbiddenError("registration disabled")


def _require_credentials(payload: CredentialsRequest) -> tuple[str, str]:
    user_id = normalize_user_id(payload.user_id)
    password = normalize_password(payload.password)
    if not user_id or not password:
        raise ValidationFailedError("userId and password required")
    return user_id, password


async def _authenticate_password(state: RelayState, payload: CredentialsRequest) -> UserRecord:
    user_id, password = _require_credentials(payload)
    user = await asyncio.to_thread(state.credentials.verify_password, user_id, password)
    if user is None:
        raise UnauthorizedError()
    return user


@router.post(
    "/register",
    dependencies=[
        Depends(require_registration_open),
        Depends(rate_limit("register", 10, 10 * 60)),
    ],
)
async def register(request: Request, state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Create an account.

    When a server token is configured the caller must present it, either as a
    bearer token or as ``serverToken`` in the body, and is then exempt from
    the invite code check.
    """
    payload = parse_body(RegisterRequest, body)
    provided = bearer_token(request) or (payload.server_token or "").strip() or None
    has_server_auth = state.authenticator.is_server_token(provided)
    if state.settings.server_token and not has_server_auth:
        raise UnauthorizedError()

    user = await asyncio.to_thread(
        state.credentials.register,
        payload.user_id,
        payload.password,
        display_name=payload.display_name,
        invite_code=payload.invite_code,
        invite_exempt=has_server_auth,
    )
    return {"ok": True, "userId": user.id, "displayName": user.label}


@router.post("/account/login", dependencies=[Depends(rate_limit("account-login", 30, 60))])
async def account_login(state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Check a user id and password without issuing a token."""
    user = await _authenticate_password(state, parse_body(CredentialsRequest, body))
    return {"ok": True, "userId": user.id, "displayName": user.label}


@router.post("/token", dependencies=[Depends(rate_limit("token", 30, 60))])
async def issue_token(state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Issue a fresh bearer token; the raw value is only ever returned here."""
    user_id, password = _require_credentials(parse_body(CredentialsRequest, body))
    user, token = await asyncio.to_thread(state.credentials.issue_token, user_id, password)
    return {"ok": True, "userId": user.id, "token": token}


@router.post("/token/usage", dependencies=[Depends(rate_limit("token-usage", 60, 60))])
async def token_usage(state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """List usage counters for every token the user holds."""
    user = await _authenticate_password(state, parse_body(CredentialsRequest, body))
    return {
        "ok": True,
        "userId": user.id,
        "usage": [usage.to_dict() for usage in user.usage_list()],
    }


@router.post("/login", dependencies=[Depends(rate_limit("login", 60, 60))])
async def token_login(state: StateDep, body: JsonBodyDep) -> dict[str, Any]:
    """Validate a bearer token, optionally pinned to a user id."""
    payload = parse_body(TokenLoginRequest, body)
    token = (payload.token or "").strip()
    if not token:
        raise ValidationFailedError("token required")
    requested_id = normalize_user_id(payload.user_id)
    user = state.credentials.verify_token(token, requested_id)
    if user is None:
        raise UnauthorizedError()
    state.credentials.record_usage(user, token)
    return {"ok": True, "userId": user.id, "token": token, "displayName": user.label}
