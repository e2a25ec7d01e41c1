from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from bearerguard.logging import get_logger
from bearerguard.service.clock import Clock, SystemClock, ensure_utc
from bearerguard.storage.errors import ConstraintViolation
from bearerguard.storage.models import User


class MemoryStore:
    """In-process user and revocation store for tests and single-instance setups.

    Every read and write goes through one lock, so ``raise_revoked_before`` is
    linearizable per user.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.revocations: Dict[int, datetime] = {}
        self._next_user_id = 1
        self._data_lock = threading.Lock()

    def create_user(self, username: str, password_hash: str) -> User:
        with self._data_lock:
            if any(existing.username == username for existing in self.users.values()):
                raise ConstraintViolation("username already exists", {"field": "username"})
            user = User(
                id=self._next_user_id,
                username=username,
                password_hash=password_hash,
            )
            self._next_user_id += 1
            self.users[user.id] = user
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.username == username), None)

    def get_revoked_before(self, user_id: int) -> Optional[datetime]:
        with self._data_lock:
            return self.revocations.get(user_id)

    def raise_revoked_before(self, user_id: int, revoked_before: datetime) -> datetime:
        """Raise the user's boundary to ``max(current, revoked_before)``."""
        requested = ensure_utc(revoked_before)
        with self._data_lock:
            current = self.revocations.get(user_id)
            effective = requested if current is None or current < requested else current
            self.revocations[user_id] = effective
            user = self.users.get(user_id)
            if user is not None:
                user.last_revoked_token_at = effective
                user.updated_at = datetime.now(timezone.utc)
        if effective != requested:
            self.logger.debug(
                "revocation_boundary_kept",
                user_id=user_id,
                requested=requested.isoformat(),
                current=effective.isoformat(),
            )
        return effective


class MemoryRevocationCache:
    """TTL-bound in-process mirror of per-user ``revoked_before`` values.

    Fallback for deployments without Redis. A plain mutex guards the whole map
    rather than a reader/writer lock; every critical section is a dict
    operation. Expired entries are swept at most once per ``sweep_interval``
    from within reads and writes, so users that are never looked up again do
    not pin memory.
    """

    DEFAULT_SWEEP_INTERVAL = timedelta(minutes=1)

    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self.clock = clock or SystemClock()
        self.sweep_interval = sweep_interval
        self._entries: Dict[int, Tuple[datetime, datetime]] = {}
        self._lock = threading.Lock()
        self._next_sweep = self.clock.now() + sweep_interval

    def _sweep_locked(self, now: datetime) -> int:
        expired = [uid for uid, (_, exp) in self._entries.items() if exp <= now]
        for uid in expired:
            self._entries.pop(uid, None)
        self._next_sweep = now + self.sweep_interval
        return len(expired)

    def _maybe_sweep_locked(self, now: datetime) -> None:
        if now >= self._next_sweep:
            self._sweep_locked(now)

    async def get_revoked_before(self, user_id: int) -> Optional[datetime]:
        now = self.clock.now()
        with self._lock:
            self._maybe_sweep_locked(now)
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            revoked_before, expires_at = entry
            if expires_at <= now:
                self._entries.pop(user_id, None)
                return None
            return revoked_before

    async def set_revoked_before(
        self, user_id: int, revoked_before: datetime, ttl: timedelta
    ) -> None:
        if ttl <= timedelta(0):
            return
        now = self.clock.now()
        with self._lock:
            self._maybe_sweep_locked(now)
            self._entries[user_id] = (ensure_utc(revoked_before), now + ttl)

    async def delete_revoked_before(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self.clock.now()
        with self._lock:
            return self._sweep_locked(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["MemoryStore", "MemoryRevocationCache"]
