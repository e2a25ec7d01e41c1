from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from psycopg import Error as PsycopgError
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from bearerguard.logging import get_logger
from bearerguard.service.clock import ensure_utc
from bearerguard.storage.errors import (
    ConstraintViolation,
    RecordNotFound,
    StoreUnavailable,
)
from bearerguard.storage.models import User


class PostgresStore:
    """Postgres-backed user and revocation store.

    The revocation boundary lives in ``users.last_revoked_token_at``; the raise
    is a single conditional ``UPDATE`` so concurrent writers serialize on the
    row lock and the column only ever moves forward.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the users table and revocation column exist before serving requests."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT column_name
                FROM information_schema.columns
                WHERE table_schema = 'public' AND table_name = 'users'
                  AND column_name = 'last_revoked_token_at'
                """
            ).fetchone()
        if not row:
            raise RuntimeError(
                "Missing users.last_revoked_token_at. Apply sql/001_users.sql before starting the service."
            )

    @staticmethod
    def _row_to_user(row: dict[str, Any]) -> User:
        revoked = row.get("last_revoked_token_at")
        return User(
            id=int(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            last_revoked_token_at=ensure_utc(revoked) if revoked else None,
        )

    def create_user(self, username: str, password_hash: str) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (username, password_hash)
                    VALUES (%s, %s)
                    RETURNING id, username, password_hash, created_at, updated_at, last_revoked_token_at
                    """,
                    (username, password_hash),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("username already exists", {"field": "username"})
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = %s", (username,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def get_revoked_before(self, user_id: int) -> Optional[datetime]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT last_revoked_token_at FROM users WHERE id = %s",
                    (user_id,),
                ).fetchone()
        except PsycopgError as exc:
            raise StoreUnavailable(f"revocation lookup failed: {type(exc).__name__}") from exc
        if not row or row.get("last_revoked_token_at") is None:
            return None
        return ensure_utc(row["last_revoked_token_at"])

    def raise_revoked_before(self, user_id: int, revoked_before: datetime) -> datetime:
        """Atomically set ``last_revoked_token_at = max(current, revoked_before)``.

        Returns the effective boundary after the update.
        """
        requested = ensure_utc(revoked_before)
        try:
            with self._connect() as conn:
                # GREATEST ignores NULL, so a first revocation just takes the requested value.
                row = conn.execute(
                    """
                    UPDATE users
                    SET last_revoked_token_at = GREATEST(last_revoked_token_at, %s),
                        updated_at = now()
                    WHERE id = %s
                    RETURNING last_revoked_token_at
                    """,
                    (requested, user_id),
                ).fetchone()
        except PsycopgError as exc:
            raise StoreUnavailable(f"revocation write failed: {type(exc).__name__}") from exc
        if not row:
            raise RecordNotFound(f"no user row for id {user_id}")
        return ensure_utc(row["last_revoked_token_at"])

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()


__all__ = ["PostgresStore"]
