from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from bearerguard.config import Settings
from bearerguard.logging import get_logger
from bearerguard.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    MalformedTokenError,
    ValidationError,
)
from bearerguard.service.jwt import ClaimSet
from bearerguard.service.tokens import IssuedToken, TokenService
from bearerguard.storage.errors import ConstraintViolation
from bearerguard.storage.models import User

logger = get_logger(__name__)

MAX_USERNAME_LENGTH = 255


class UserStore(Protocol):
    def create_user(self, username: str, password_hash: str) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...


class AuthService:
    """Account registration, password login and bearer-token authentication."""

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger
        # Verified against on unknown usernames so both failure paths cost the same.
        self._dummy_hash = self._pwd_hasher.hash("bearerguard-timing-guard")

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_password(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError) as exc:
            self.logger.warning("password_verify_failed", error=str(exc))
            return False

    def _validate_credentials(self, username: str, password: str) -> str:
        username = (username or "").strip()
        if not username:
            raise ValidationError("username is required", detail={"field": "username"})
        if len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(
                f"username must be at most {MAX_USERNAME_LENGTH} characters",
                detail={"field": "username"},
            )
        if len(password or "") < self.settings.min_password_length:
            raise ValidationError(
                f"password must be at least {self.settings.min_password_length} characters",
                detail={"field": "password"},
            )
        return username

    async def register(self, username: str, password: str) -> User:
        if not self.settings.allow_registration:
            raise ForbiddenError("registration is disabled")
        username = self._validate_credentials(username, password)
        try:
            user = self.store.create_user(username, self._hash_password(password))
        except ConstraintViolation as exc:
            raise ConflictError("username already exists", detail=exc.detail) from exc
        self.logger.info("user_registered", user_id=user.id)
        return user

    async def login(self, username: str, password: str) -> Tuple[User, IssuedToken]:
        user = self.store.get_user_by_username((username or "").strip())
        if user is None:
            self._verify_password(self._dummy_hash, password or "")
            self.logger.info("login_failed", reason="unknown_user")
            raise AuthenticationError("invalid username or password")
        if not self._verify_password(user.password_hash, password or ""):
            self.logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError("invalid username or password")
        issued = self.tokens.issue_token(user.id, user.username)
        self.logger.info("login_succeeded", user_id=user.id)
        return user, issued

    async def authenticate(self, authorization: Optional[str]) -> ClaimSet:
        """Validate an ``Authorization: Bearer <token>`` header value."""
        if not authorization:
            raise AuthenticationError("missing bearer token")
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise MalformedTokenError("authorization header must use the Bearer scheme")
        return await self.tokens.validate_token(token.strip())

    async def revoke(
        self, user_id: int, before: Optional[datetime] = None
    ) -> datetime:
        """Revoke the caller's tokens issued before ``before`` (default: now)."""
        if not self.settings.allow_token_revoke:
            raise ForbiddenError("token revocation is disabled")
        if before is None:
            return await self.tokens.revoke_all(user_id)
        return await self.tokens.revoke_before(user_id, before)

    def describe(self, claims: ClaimSet) -> dict[str, Any]:
        return {
            "user_id": claims.user_id,
            "username": claims.username,
            "issued_at": claims.issued_at,
            "expires_at": claims.expires_at,
        }


__all__ = ["AuthService", "UserStore"]
