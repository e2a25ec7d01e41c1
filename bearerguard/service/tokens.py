from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from bearerguard.config import Settings
from bearerguard.logging import get_logger
from bearerguard.service.clock import Clock, SystemClock, ensure_utc
from bearerguard.service.errors import (
    TokenExpiredError,
    TokenNotYetValidError,
    TokenRevokedError,
)
from bearerguard.service.jwt import ClaimSet, TokenSigner
from bearerguard.service.revocation import (
    RevocationCache,
    RevocationRegistry,
    RevocationStore,
)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    claims: ClaimSet


class TokenService:
    """Issues, validates and revokes signed bearer tokens.

    Collaborators are passed in explicitly; nothing here reads process-global
    configuration. A ``MemoryStore`` with no cache gives a fully in-process
    instance for tests.
    """

    def __init__(
        self,
        settings: Settings,
        store: RevocationStore,
        cache: Optional[RevocationCache] = None,
        *,
        clock: Optional[Clock] = None,
        logger: Any = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.logger = logger or get_logger(__name__)
        self.issuer = settings.jwt_issuer
        self.token_duration = settings.token_duration
        self.signer = TokenSigner(settings.jwt_signing_key)
        self.revocations = RevocationRegistry(
            store,
            cache,
            window=settings.revocation_window,
            clock=self.clock,
            fail_closed=settings.revocation_fail_closed,
            logger=self.logger,
        )

    def issue_token(self, user_id: int, username: str) -> IssuedToken:
        now = self.clock.now()
        claims = ClaimSet(
            user_id=user_id,
            username=username,
            issued_at=now,
            not_before=now,
            expires_at=now + self.token_duration,
            issuer=self.issuer,
            subject=username,
        )
        token = self.signer.sign_claims(claims)
        self.logger.info(
            "token_issued",
            user_id=user_id,
            expires_at=claims.expires_at.isoformat(),
        )
        return IssuedToken(token=token, expires_at=claims.expires_at, claims=claims)

    async def validate_token(self, token: str) -> ClaimSet:
        """Return the token's claims or raise an ``InvalidTokenError`` subclass.

        Checks run cheapest first: signature and structure, then the temporal
        claims, and only then the revocation lookup.
        """
        claims = self.signer.verify_claims(token, issuer=self.issuer)
        now = self.clock.now()
        if now < claims.not_before:
            raise TokenNotYetValidError()
        if now > claims.expires_at:
            raise TokenExpiredError()
        if await self.revocations.is_token_revoked(claims.user_id, claims.issued_at):
            self.logger.info("revoked_token_rejected", user_id=claims.user_id)
            raise TokenRevokedError()
        return claims

    async def is_token_revoked(self, user_id: int, issued_at: datetime) -> bool:
        return await self.revocations.is_token_revoked(user_id, issued_at)

    async def revoke_all(self, user_id: int) -> datetime:
        """Invalidate every token issued for ``user_id`` before now."""
        return await self.revoke_before(user_id, self.clock.now())

    async def revoke_before(self, user_id: int, before: datetime) -> datetime:
        """Invalidate tokens issued before ``before``; never lowers an existing boundary.

        Returns the effective boundary.
        """
        return await self.revocations.revoke_before(user_id, ensure_utc(before))


__all__ = ["IssuedToken", "TokenService"]
