"""Process-wide relay state assembled from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vimalinx_relay.core.security import ScryptParams, TokenHasher
from vimalinx_relay.core.settings import Settings
from vimalinx_relay.services.authenticator import RequestAuthenticator
from vimalinx_relay.services.channels import DeviceChannelRegistry
from vimalinx_relay.services.chat_owners import ChatOwnerResolver
from vimalinx_relay.services.credentials import CredentialStore
from vimalinx_relay.services.gateway import GatewayClient
from vimalinx_relay.services.mailbox import InboundMailbox
from vimalinx_relay.services.persistence import UsersSnapshotFile
from vimalinx_relay.services.rate_limit import RateLimiter
from vimalinx_relay.services.replay import ReplayProtectionService

logger = logging.getLogger(__name__)


@dataclass
class RelayState:
    """Every shared store the endpoints touch, owned by one application."""

    settings: Settings
    credentials: CredentialStore
    channels: DeviceChannelRegistry
    mailbox: InboundMailbox
    chat_owners: ChatOwnerResolver
    replay: ReplayProtectionService
    rate_limiter: RateLimiter
    authenticator: RequestAuthenticator
    gateway: GatewayClient

    @classmethod
    def from_settings(cls, settings: Settings, gateway: GatewayClient | None = None) -> RelayState:
        credentials = CredentialStore(
            hasher=TokenHasher(settings.secret_key if settings.token_hashing_enabled else None),
            snapshot=UsersSnapshotFile(settings.users_file, settings.effective_users_write_file),
            scrypt=ScryptParams(
                n=settings.scrypt_n,
                r=settings.scrypt_r,
                p=settings.scrypt_p,
                key_len=settings.scrypt_key_len,
            ),
            invite_codes=settings.invite_codes,
            save_debounce_seconds=settings.save_debounce_seconds,
        )
        replay = ReplayProtectionService()
        if gateway is None:
            gateway = GatewayClient(
                default_url=settings.gateway_url,
                default_token=settings.gateway_token,
                server_token=settings.server_token,
                hmac_secret=settings.hmac_secret,
                timeout_seconds=settings.gateway_timeout_seconds,
            )
        return cls(
            settings=settings,
            credentials=credentials,
            channels=DeviceChannelRegistry(settings.outbox_limit),
            mailbox=InboundMailbox(),
            chat_owners=ChatOwnerResolver(credentials),
            replay=replay,
            rate_limiter=RateLimiter(enabled=settings.rate_limit_enabled),
            authenticator=RequestAuthenticator(
                credentials,
                replay,
                hmac_secret=settings.hmac_secret,
                signature_required=settings.signature_required,
                signature_ttl_ms=settings.signature_ttl_ms,
                server_token=settings.server_token,
            ),
            gateway=gateway,
        )

    def load_users(self) -> None:
        default_user = None
        if self.settings.default_user_id and self.settings.default_user_token:
            default_user = (self.settings.default_user_id, self.settings.default_user_token)
        self.credentials.load(inline=self.settings.users_inline, default_user=default_user)

    def startup_warnings(self) -> list[str]:
        """Configuration problems worth surfacing when the server starts."""
        settings = self.settings
        warnings: list[str] = []
        if settings.inbound_mode == "webhook" and not settings.gateway_url:
            warnings.append("Webhook inbound mode without RELAY_GATEWAY_URL; users need their own gateway URL")
        if settings.signature_required and not settings.hmac_secret:
            warnings.append("Signatures are required but RELAY_HMAC_SECRET is unset; signed routes will reject")
        if not settings.signature_required:
            warnings.append("Request signing is disabled; set RELAY_HMAC_SECRET to enable it")
        if not self.credentials.users:
            warnings.append("No users configured yet")
        if not settings.token_hashing_enabled:
            warnings.append("RELAY_SECRET_KEY is shorter than 16 characters; tokens are stored in plaintext")
        if settings.users_file is None and settings.users_write_file is None:
            warnings.append("No users file configured; registrations cannot be persisted")
        return warnings

    async def startup(self) -> None:
        self.load_users()
        self.credentials.start()
        for warning in self.startup_warnings():
            logger.warning(warning)
        logger.info(
            "Relay ready with %d user(s), inbound mode %s",
            len(self.credentials.users),
            self.settings.inbound_mode,
        )

    async def shutdown(self) -> None:
        await self.credentials.stop()
        await self.gateway.close()
