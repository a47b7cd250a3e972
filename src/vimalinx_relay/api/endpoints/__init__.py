# src/vimalinx_relay/api/endpoints/__init__.py
"""API endpoint modules for the relay."""

from .auth import router as auth_router
from .messages import router as messages_router
from .stream import router as stream_router
from .system import router as system_router

__all__ = [
    "auth_router",
    "messages_router",
    "stream_router",
    "system_router",
]
