"""Health and public configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from vimalinx_relay.api.dependencies import StateDep, enforce_ip_allowlist

router = APIRouter(tags=["system"])


@router.get("/healthz")
async def health_check() -> dict[str, bool]:
    """Health check endpoint to verify the service is running."""
    return {"ok": True}


@router.get("/api/config", dependencies=[Depends(enforce_ip_allowlist)])
async def get_public_config(state: StateDep) -> dict[str, bool]:
    """Return the registration options a client needs before signing up.

    Args:
        state: Relay state holding the active settings

    Returns:
        Whether an invite code is required and whether registration is open
    """
    return {
        "ok": True,
        "inviteRequired": bool(state.settings.invite_codes),
        "allowRegistration": state.settings.allow_registration,
    }
