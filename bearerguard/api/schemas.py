from __future__ import annotations

import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from bearerguard.logging import get_correlation_id
from bearerguard.service.auth import MAX_USERNAME_LENGTH

MAX_PASSWORD_LENGTH = 1024


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width characters used for spoofing."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "service_unavailable",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class CredentialsRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=MAX_USERNAME_LENGTH)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        normalized = _normalize_unicode(value).strip()
        if not normalized:
            raise ValueError("username must not be blank")
        return normalized


class RegisterRequest(CredentialsRequest):
    pass


class LoginRequest(CredentialsRequest):
    pass


class RevokeRequest(BaseModel):
    revoke_before_time: Optional[datetime] = None


class UserResponse(BaseModel):
    id: int
    username: str
    created_at: datetime


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime


class RevokeResponse(BaseModel):
    user_id: int
    revoked_before: datetime


class ClaimsResponse(BaseModel):
    user_id: int
    username: str
    issued_at: datetime
    expires_at: datetime
