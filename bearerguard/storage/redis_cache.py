from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

from bearerguard.service.clock import ensure_utc


class RedisCache:
    """Thin Redis wrapper holding the per-user revocation boundary mirror."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "bearerguard",
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _revoke_key(self, user_id: int) -> str:
        if not self.key_prefix:
            return f"revoke:{user_id}"
        return f"{self.key_prefix}:revoke:{user_id}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling the cache."""
        # Short-lived sync client so the async client is not bound to a startup loop.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get_revoked_before(self, user_id: int) -> Optional[datetime]:
        raw = await self.client.get(self._revoke_key(user_id))
        if not raw:
            return None
        try:
            return ensure_utc(datetime.fromisoformat(raw))
        except ValueError:
            # Unreadable entry: drop it so the next reader goes to the store.
            await self.client.delete(self._revoke_key(user_id))
            return None

    async def set_revoked_before(
        self, user_id: int, revoked_before: datetime, ttl: timedelta
    ) -> None:
        ttl_ms = int(ttl.total_seconds() * 1000)
        if ttl_ms <= 0:
            return
        await self.client.set(
            self._revoke_key(user_id),
            ensure_utc(revoked_before).isoformat(),
            px=ttl_ms,
        )

    async def delete_revoked_before(self, user_id: int) -> None:
        await self.client.delete(self._revoke_key(user_id))

    async def close(self) -> None:
        await self.client.aclose()


__all__ = ["RedisCache"]
