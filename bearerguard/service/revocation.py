from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from bearerguard.logging import get_logger
from bearerguard.service.clock import Clock, SystemClock, ensure_utc
from bearerguard.service.errors import NotFoundError, RevocationStoreError
from bearerguard.storage.errors import RecordNotFound, StoreUnavailable


class RevocationStore(Protocol):
    """Durable per-user ``revoked_before`` record."""

    def get_revoked_before(self, user_id: int) -> Optional[datetime]: ...

    def raise_revoked_before(self, user_id: int, revoked_before: datetime) -> datetime: ...


class RevocationCache(Protocol):
    """Disposable TTL mirror of the store; a miss means "unknown"."""

    async def get_revoked_before(self, user_id: int) -> Optional[datetime]: ...

    async def set_revoked_before(
        self, user_id: int, revoked_before: datetime, ttl: timedelta
    ) -> None: ...

    async def delete_revoked_before(self, user_id: int) -> None: ...


class RevocationRegistry:
    """Decides whether a token's ``issued_at`` predates the user's revocation.

    The store is authoritative. The cache, when present, only short-circuits
    the store read for users with a live revocation record. Records older than
    ``window`` are treated as absent: by then every token that existed at
    revocation time has expired on its own.
    """

    def __init__(
        self,
        store: RevocationStore,
        cache: Optional[RevocationCache] = None,
        *,
        window: timedelta,
        clock: Optional[Clock] = None,
        fail_closed: bool = False,
        logger: Any = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.window = window
        self.clock = clock or SystemClock()
        self.fail_closed = fail_closed
        self.logger = logger or get_logger(__name__)

    async def _cached_boundary(self, user_id: int) -> Optional[datetime]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_revoked_before(user_id)
        except Exception as exc:
            self.logger.warning(
                "revocation_cache_read_failed", user_id=user_id, error=str(exc)
            )
            return None

    async def _drop_cached(self, user_id: int) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.delete_revoked_before(user_id)
        except Exception as exc:
            # A leftover entry serves the previous boundary until its TTL lapses.
            self.logger.warning(
                "revocation_cache_delete_failed", user_id=user_id, error=str(exc)
            )

    async def _populate_cache(
        self, user_id: int, revoked_before: datetime, ttl: timedelta
    ) -> None:
        if self.cache is None or ttl <= timedelta(0):
            return
        try:
            await self.cache.set_revoked_before(user_id, revoked_before, ttl)
        except Exception as exc:
            self.logger.warning(
                "revocation_cache_write_failed", user_id=user_id, error=str(exc)
            )

    def _read_store(self, user_id: int) -> Optional[datetime]:
        value = self.store.get_revoked_before(user_id)
        return ensure_utc(value) if value is not None else None

    async def is_token_revoked(self, user_id: int, issued_at: datetime) -> bool:
        issued_at = ensure_utc(issued_at)

        cached = await self._cached_boundary(user_id)
        if cached is not None:
            # Entries carry TTL = remaining window, so a hit is never stale.
            return issued_at < ensure_utc(cached)

        try:
            revoked_before = self._read_store(user_id)
        except Exception as exc:
            if self.fail_closed:
                self.logger.error(
                    "revocation_lookup_failed_rejecting", user_id=user_id, error=str(exc)
                )
                return True
            # Fail-open: the token stands on its signature and expiry alone.
            self.logger.warning(
                "revocation_lookup_failed_allowing", user_id=user_id, error=str(exc)
            )
            return False

        if revoked_before is None:
            return False

        age = self.clock.now() - revoked_before
        if age > self.window:
            return False

        await self._populate_cache(user_id, revoked_before, self.window - age)

        # Re-read after populating: a revoke that committed between our first
        # read and the cache write would otherwise leave a stale entry behind.
        try:
            confirmed = self._read_store(user_id)
        except Exception as exc:
            self.logger.warning(
                "revocation_confirm_read_failed", user_id=user_id, error=str(exc)
            )
            confirmed = revoked_before
        if confirmed is not None and confirmed != revoked_before:
            await self._drop_cached(user_id)
            revoked_before = confirmed

        return issued_at < revoked_before

    async def revoke_before(self, user_id: int, before: datetime) -> datetime:
        """Raise the durable boundary, then invalidate the cached copy.

        Returns the effective boundary, which may be later than ``before``.
        """
        requested = ensure_utc(before)
        try:
            effective = self.store.raise_revoked_before(user_id, requested)
        except RecordNotFound as exc:
            raise NotFoundError("user not found", detail={"user_id": user_id}) from exc
        except StoreUnavailable as exc:
            self.logger.error(
                "revocation_write_failed", user_id=user_id, error=str(exc)
            )
            raise RevocationStoreError("revocation store unavailable") from exc

        # The durable write is done; finish invalidation even if the caller is cancelled.
        await asyncio.shield(self._drop_cached(user_id))
        effective = ensure_utc(effective)
        self.logger.info(
            "tokens_revoked",
            user_id=user_id,
            requested_before=requested.isoformat(),
            revoked_before=effective.isoformat(),
        )
        return effective


__all__ = ["RevocationStore", "RevocationCache", "RevocationRegistry"]
