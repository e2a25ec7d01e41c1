#!/usr/bin/env python3
"""Revoke a user's bearer tokens from the command line.

Usage:
    # Revoke everything issued up to now:
    python scripts/revoke_tokens.py --username alice

    # Revoke tokens issued before a point in time:
    python scripts/revoke_tokens.py --user-id 42 --before 2024-06-01T12:00:00Z

Environment Variables:
    JWT_SIGNING_KEY: Signing secret (required, same as the running service)
    DATABASE_URL: PostgreSQL connection string
    REDIS_URL: Redis URL; the cached boundary is invalidated after the write
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def parse_before(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # fromisoformat rejects a trailing "Z" before Python 3.11
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def revoke_tokens(
    *,
    user_id: Optional[int],
    username: Optional[str],
    before: Optional[datetime],
    dry_run: bool = False,
) -> dict:
    # Import here to avoid loading config before env vars are set
    from bearerguard.service.runtime import get_runtime

    runtime = get_runtime()
    try:
        user = (
            runtime.store.get_user(user_id)
            if user_id is not None
            else runtime.store.get_user_by_username(username or "")
        )
        if user is None:
            raise LookupError(f"user not found: {user_id if user_id is not None else username}")

        if dry_run:
            print(f"[DRY RUN] Would revoke tokens for {user.username} (id: {user.id})")
            return {"user_id": user.id, "status": "dry_run"}

        if before is None:
            effective = await runtime.tokens.revoke_all(user.id)
        else:
            effective = await runtime.tokens.revoke_before(user.id, before)
        return {"user_id": user.id, "status": "revoked", "revoked_before": effective}
    finally:
        await runtime.close()


def main():
    parser = argparse.ArgumentParser(
        description="Revoke bearer tokens for a bearerguard user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id", type=int, help="Numeric user id")
    target.add_argument("--username", help="Username")
    parser.add_argument(
        "--before",
        help="ISO-8601 timestamp; tokens issued before it are revoked (default: now)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    try:
        before = parse_before(args.before)
    except ValueError:
        print(f"Error: --before is not an ISO-8601 timestamp: {args.before}")
        sys.exit(1)

    try:
        result = asyncio.run(
            revoke_tokens(
                user_id=args.user_id,
                username=args.username,
                before=before,
                dry_run=args.dry_run,
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "revoked":
        print(f"Tokens for user {result['user_id']} issued before "
              f"{result['revoked_before'].isoformat()} are now rejected.")


if __name__ == "__main__":
    main()
