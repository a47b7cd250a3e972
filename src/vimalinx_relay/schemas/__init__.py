# src/vimalinx_relay/schemas/__init__.py
"""
Pydantic schemas for API request models.

These schemas validate JSON bodies after they have been read raw and parsed.
"""

from .auth import CredentialsRequest, RegisterRequest, TokenLoginRequest
from .common import RelayModel
from .messages import ClientMessageRequest, SendRequest

__all__ = [
    "ClientMessageRequest",
    "CredentialsRequest",
    "RegisterRequest",
    "RelayModel",
    "SendRequest",
    "TokenLoginRequest",
]
