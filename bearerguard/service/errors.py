from __future__ import annotations

from typing import Optional


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup (e.g. an empty signing key).

    Must not subclass ``ValueError``: pydantic validators re-raise it as-is.
    """


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    - service_unavailable (503)
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
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidTokenError(AuthenticationError):
    """Bearer token rejected; subclasses carry the informational reason."""

    reason = "invalid"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        super().__init__(message or f"token rejected: {self.reason}", **kwargs)


class MalformedTokenError(InvalidTokenError):
    reason = "malformed"


class BadSignatureError(InvalidTokenError):
    reason = "bad_signature"


class TokenExpiredError(InvalidTokenError):
    reason = "expired"


class TokenNotYetValidError(InvalidTokenError):
    reason = "not_yet_valid"


class TokenRevokedError(InvalidTokenError):
    reason = "revoked"


class ForbiddenError(ServiceError):
    """Access denied - feature disabled or insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class RevocationStoreError(ServiceError):
    """The durable revocation store could not complete a write (503)."""
    status_code = 503
    error_code = "service_unavailable"


__all__ = [
    "ConfigurationError",
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidTokenError",
    "MalformedTokenError",
    "BadSignatureError",
    "TokenExpiredError",
    "TokenNotYetValidError",
    "TokenRevokedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RevocationStoreError",
]
