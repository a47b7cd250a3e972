"""Outbound forwarding of inbound client messages to an agent gateway.

Forwarding is a single attempt; failures surface to the caller as
:class:`GatewayError` and retry policy is left to the client side.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable

import httpx

from vimalinx_relay.core.clock import now_ms
from vimalinx_relay.models import InboundMessage, UserRecord
from vimalinx_relay.services.authenticator import build_signature_headers

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when a message cannot be delivered to the gateway."""


class GatewayClient:
    """Posts ``{"message": ...}`` to the per-user or global gateway URL."""

    def __init__(
        self,
        *,
        default_url: str | None = None,
        default_token: str | None = None,
        server_token: str | None = None,
        hmac_secret: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.default_url = default_url
        self.default_token = default_token
        self.server_token = server_token
        self.hmac_secret = hmac_secret
        self._clock = clock
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    def target_url(self, user: UserRecord) -> str | None:
        return user.gateway_url or self.default_url

    def bearer_token(self, user: UserRecord) -> str | None:
        return user.gateway_token or self.default_token or self.server_token

    def build_request(self, message: InboundMessage, user: UserRecord) -> tuple[str, dict[str, str], str]:
        """Return ``(url, headers, body)`` for forwarding ``message``."""
        url = self.target_url(user)
        if not url:
            raise GatewayError(f"Gateway URL missing for user {user.id}")
        headers = {"Content-Type": "application/json"}
        token = self.bearer_token(user)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = json.dumps({"message": message.to_dict()}, separators=(",", ":"))
        if self.hmac_secret:
            headers.update(
                build_signature_headers(self.hmac_secret, body, str(uuid.uuid4()), self._clock())
            )
        return url, headers, body

    async def forward(self, message: InboundMessage, user: UserRecord) -> None:
        url, headers, body = self.build_request(message, user)
        try:
            response = await self._client.post(url, headers=headers, content=body)
        except httpx.HTTPError as exc:
            logger.warning("Gateway forwarding failed for user %s: %s", user.id, exc)
            raise GatewayError(f"Gateway request failed ({exc.__class__.__name__})") from exc
        if response.is_error:
            logger.warning(
                "Gateway rejected message for user %s with status %s", user.id, response.status_code
            )
            raise GatewayError(
                f"Gateway request failed ({response.status_code} {response.reason_phrase})"
            )

    async def close(self) -> None:
        await self._client.aclose()
