# src/vimalinx_relay/schemas/auth.py
"""Account and token request schemas."""

from pydantic import Field

from .common import RelayModel


class RegisterRequest(RelayModel):
    """Schema for creating a new account."""

    user_id: str | None = Field(None, description="Requested user id, lowercased on registration")
    password: str | None = Field(None, description="Password of 6 to 64 characters")
    display_name: str | None = Field(None, description="Optional name shown to other clients")
    invite_code: str | None = Field(None, description="Invite code when invites are required")
    server_token: str | None = Field(None, description="Server token, alternative to a bearer header")


class CredentialsRequest(RelayModel):
    """Schema for password-authenticated account calls."""

    user_id: str | None = None
    password: str | None = None


class TokenLoginRequest(RelayModel):
    """Schema for validating an existing bearer token."""

    user_id: str | None = None
    token: str | None = None
