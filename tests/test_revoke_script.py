"""Tests for the operator revocation script."""

import importlib.util
from datetime import datetime, timezone
from pathlib import Path

import pytest

from bearerguard.service.runtime import get_runtime

ROOT = Path(__file__).resolve().parent.parent
_spec = importlib.util.spec_from_file_location(
    "revoke_tokens_script", ROOT / "scripts" / "revoke_tokens.py"
)
revoke_script = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(revoke_script)


@pytest.fixture
def close_calls(monkeypatch):
    runtime = get_runtime()
    calls = []

    async def fake_close():
        calls.append(True)

    monkeypatch.setattr(runtime, "close", fake_close)
    return calls

def test_parse_before_accepts_zulu_suffix():
    assert revoke_script.parse_before("2024-06-01T12:00:00Z") == datetime(
        2024, 6, 1, 12, tzinfo=timezone.utc
    )
    assert revoke_script.parse_before(None) is None

async def test_unknown_user_still_closes_runtime(close_calls):
    with pytest.raises(LookupError):
        await revoke_script.revoke_tokens(user_id=None, username="ghost", before=None)

    assert close_calls == [True]

async def test_dry_run_closes_runtime_without_revoking(close_calls):
    runtime = get_runtime()
    user = runtime.store.create_user("alice", "hash")

    result = await revoke_script.revoke_tokens(
        user_id=user.id, username=None, before=None, dry_run=True
    )

    assert result == {"user_id": user.id, "status": "dry_run"}
    assert runtime.store.get_revoked_before(user.id) is None
    assert close_calls == [True]

async def test_revoke_before_writes_boundary_and_closes_runtime(close_calls):
    runtime = get_runtime()
    user = runtime.store.create_user("bob", "hash")
    cutoff = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    result = await revoke_script.revoke_tokens(
        user_id=None, username="bob", before=cutoff
    )

    assert result["status"] == "revoked"
    assert result["revoked_before"] == cutoff
    assert runtime.store.get_revoked_before(user.id) == cutoff
    assert close_calls == [True]
