"""Business logic services for the relay server."""

from .authenticator import AuthMatch, RequestAuthenticator
from .channels import DeviceChannelRegistry
from .chat_owners import ChatOwnerResolver
from .credentials import CredentialStore
from .gateway import GatewayClient, GatewayError
from .mailbox import InboundMailbox
from .rate_limit import RateLimiter
from .replay import ReplayProtectionService
from .state import RelayState

__all__ = [
    "AuthMatch",
    "ChatOwnerResolver",
    "CredentialStore",
    "DeviceChannelRegistry",
    "GatewayClient",
    "GatewayError",
    "InboundMailbox",
    "RateLimiter",
    "RelayState",
    "ReplayProtectionService",
    "RequestAuthenticator",
]
