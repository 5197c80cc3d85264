from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered in the error envelope:
    - validation_error (400)
    - missing_tokens (400)
    - malformed_token (400)
    - invalid_credentials (400)
    - invalid_or_expired_code (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - upstream_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Missing or malformed request fields (400)."""
    status_code = 400
    error_code = "validation_error"


class MissingTokensError(ValidationError):
    """Token triple incomplete or expiry not an integer (400)."""
    error_code = "missing_tokens"


class MalformedTokenError(ValidationError):
    """Access token claims could not be decoded (400)."""
    error_code = "malformed_token"


class InvalidCredentialsError(ServiceError):
    """Identity provider rejected the email/password pair (400)."""
    status_code = 400
    error_code = "invalid_credentials"


class InvalidOrExpiredCodeError(ServiceError):
    """Password-reset code rejected, expired or already used (400)."""
    status_code = 400
    error_code = "invalid_or_expired_code"


class AuthenticationError(ServiceError):
    """No session or no resolvable profile (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Authenticated, but role or ownership does not allow the action (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class UpstreamError(ServiceError):
    """Identity provider or record store failed for an opaque reason (500)."""
    status_code = 500
    error_code = "upstream_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "MissingTokensError",
    "MalformedTokenError",
    "InvalidCredentialsError",
    "InvalidOrExpiredCodeError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "UpstreamError",
]
