# src/vimalinx_relay/api/__init__.py
"""HTTP API for the relay."""

from .endpoints import auth_router, messages_router, stream_router, system_router

__all__ = [
    "auth_router",
    "messages_router",
    "stream_router",
    "system_router",
]
