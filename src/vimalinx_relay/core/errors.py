"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to. The API layer renders them
as ``{"error": message}`` JSON bodies; services never build responses.
"""

from __future__ import annotations

from fastapi import status


class RelayError(RuntimeError):
    """Base exception for request-terminating relay failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "internal error"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        # Logged server-side only; never rendered into a response body.
        self.detail = detail
        super().__init__(detail or self.message)


class ValidationFailedError(RelayError):
    """Malformed or missing request fields."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "invalid request"


class UnauthorizedError(RelayError):
    """Bad credentials, token or signature."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "unauthorized"


class ForbiddenError(RelayError):
    """Registration disabled, invalid invite or address not allowlisted."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "forbidden"


class NotFoundError(RelayError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "not found"


class ConflictError(RelayError):
    """Duplicate user or replayed nonce."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "conflict"


class PayloadTooLargeError(RelayError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_message = "payload too large"


class UnsupportedMediaTypeError(RelayError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    default_message = "unsupported media type"


class RateLimitedError(RelayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "rate limited"


class InternalServerError(RelayError):
    """Persistence failures on explicit writes."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "internal error"


class UpstreamFailureError(RelayError):
    """Gateway forwarding failed; surfaced verbatim and never retried."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "gateway request failed"
