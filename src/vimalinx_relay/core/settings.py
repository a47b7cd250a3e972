"""Application settings and configuration.

This module defines all configuration options for the relay server.
Settings are loaded from environment variables with sensible defaults.
"""

import re
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_INVITE_SEPARATORS = re.compile(r"[\n,;]+")
_MIN_SECRET_KEY_LENGTH = 16


class Settings(BaseSettings):
    """Relay settings loaded from environment variables.

    Every option can be overridden via its ``RELAY_*`` environment variable or
    an ``.env`` file. Tests construct instances directly using field names.
    """

    # Network binding
    bind_host: str = Field(default="0.0.0.0", alias="RELAY_BIND_HOST")
    port: int = Field(default=8788, alias="RELAY_PORT")

    # User snapshot sources
    users_file: str | None = Field(default=None, alias="RELAY_USERS_FILE")
    users_write_file: str | None = Field(default=None, alias="RELAY_USERS_WRITE_FILE")
    users_inline: str | None = Field(default=None, alias="RELAY_USERS")
    default_user_id: str | None = Field(default=None, alias="RELAY_DEFAULT_USER_ID")
    default_user_token: str | None = Field(default=None, alias="RELAY_DEFAULT_USER_TOKEN")
    save_debounce_seconds: float = Field(default=1.0, alias="RELAY_SAVE_DEBOUNCE_SECONDS")

    # Registration
    allow_registration: bool = Field(default=True, alias="RELAY_ALLOW_REGISTRATION")
    invite_codes_raw: str = Field(default="", alias="RELAY_INVITE_CODES")

    # Inbound delivery and the downstream gateway
    inbound_mode: Literal["poll", "webhook"] = Field(default="poll", alias="RELAY_INBOUND_MODE")
    server_token: str | None = Field(default=None, alias="RELAY_SERVER_TOKEN")
    gateway_url: str | None = Field(default=None, alias="RELAY_GATEWAY_URL")
    gateway_token: str | None = Field(default=None, alias="RELAY_GATEWAY_TOKEN")
    gateway_timeout_seconds: float = Field(default=10.0, alias="RELAY_GATEWAY_TIMEOUT_SECONDS")

    # Request signing
    hmac_secret: str | None = Field(default=None, alias="RELAY_HMAC_SECRET")
    require_signature: bool | None = Field(default=None, alias="RELAY_REQUIRE_SIGNATURE")
    signature_ttl_ms: int = Field(default=300_000, alias="RELAY_SIGNATURE_TTL_MS")

    # Credential hashing
    secret_key: str = Field(default="", alias="RELAY_SECRET_KEY")
    scrypt_n: int = Field(default=16384, alias="RELAY_SCRYPT_N")
    scrypt_r: int = Field(default=8, alias="RELAY_SCRYPT_R")
    scrypt_p: int = Field(default=1, alias="RELAY_SCRYPT_P")
    scrypt_key_len: int = Field(default=64, alias="RELAY_SCRYPT_KEY_LEN")

    # Client identification and throttling
    trust_proxy: bool = Field(default=False, alias="RELAY_TRUST_PROXY")
    rate_limit_enabled: bool = Field(default=True, alias="RELAY_RATE_LIMIT")
    allowed_ips_raw: str = Field(default="", alias="RELAY_ALLOWED_IPS")

    # Transport tuning
    outbox_limit: int = Field(default=200, alias="RELAY_OUTBOX_LIMIT")
    heartbeat_seconds: float = Field(default=25.0, alias="RELAY_HEARTBEAT_SECONDS")
    poll_default_wait_ms: int = Field(default=20_000, alias="RELAY_POLL_DEFAULT_WAIT_MS")
    poll_max_wait_ms: int = Field(default=30_000, alias="RELAY_POLL_MAX_WAIT_MS")
    max_body_bytes: int = Field(default=1024 * 1024, alias="RELAY_MAX_BODY_BYTES")

    log_level: str = Field(default="INFO", alias="RELAY_LOG_LEVEL")

    # CORS configuration for the bundled web client
    cors_origins: list[str] = Field(default=["*"], alias="RELAY_CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator(
        "users_file",
        "users_write_file",
        "users_inline",
        "default_user_id",
        "default_user_token",
        "server_token",
        "gateway_url",
        "gateway_token",
        "hmac_secret",
        "require_signature",
        mode="before",
    )
    @classmethod
    def _blank_as_unset(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("inbound_mode", mode="before")
    @classmethod
    def _normalize_inbound_mode(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("secret_key", mode="before")
    @classmethod
    def _strip_secret_key(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @property
    def invite_codes(self) -> list[str]:
        """Return the configured invite codes; empty means invites are optional."""
        return [code.strip() for code in _INVITE_SEPARATORS.split(self.invite_codes_raw) if code.strip()]

    @property
    def allowed_ips(self) -> list[str]:
        """Return the client IP allowlist; empty means every address is allowed."""
        return [ip.strip() for ip in _INVITE_SEPARATORS.split(self.allowed_ips_raw) if ip.strip()]

    @property
    def signature_required(self) -> bool:
        """Return whether signed requests are enforced.

        An explicit ``RELAY_REQUIRE_SIGNATURE`` wins; otherwise signing is
        required exactly when an HMAC secret is configured.
        """
        if self.require_signature is not None:
            return self.require_signature
        return bool(self.hmac_secret)

    @property
    def token_hashing_enabled(self) -> bool:
        """Return True when the secret key is long enough to key token HMACs."""
        return len(self.secret_key) >= _MIN_SECRET_KEY_LENGTH

    @property
    def effective_users_write_file(self) -> str | None:
        """Return the snapshot destination, falling back to the users file."""
        return self.users_write_file or self.users_file


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()  # type: ignore[call-arg]
