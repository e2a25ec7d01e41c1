"""Behavioural tests for TokenService: issuance, validation and revocation."""

import asyncio
import threading
from datetime import timedelta

import pytest

from bearerguard.config import Settings
from bearerguard.service.clock import ManualClock
from bearerguard.service.errors import (
    BadSignatureError,
    ConfigurationError,
    MalformedTokenError,
    TokenExpiredError,
    TokenNotYetValidError,
    TokenRevokedError,
)
from bearerguard.service.tokens import TokenService
from bearerguard.storage.memory import MemoryRevocationCache, MemoryStore


def make_settings(**overrides):
    values = {
        "jwt_signing_key": "token-service-test-secret-0123456789abcdef",
        "token_duration": timedelta(hours=24),
        "revocation_window": timedelta(hours=24),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(clock):
    return MemoryRevocationCache(clock=clock)


@pytest.fixture
def service(store, cache, clock, recording_logger):
    return TokenService(make_settings(), store, cache, clock=clock, logger=recording_logger)


async def test_issue_then_validate_round_trip(service, clock):
    issued = service.issue_token(42, "alice")
    claims = await service.validate_token(issued.token)

    assert claims.user_id == 42
    assert claims.username == "alice"
    assert claims.subject == "alice"
    assert claims.issuer == "bearerguard"
    assert claims.issued_at == clock.now()
    assert claims.not_before == claims.issued_at
    assert claims.expires_at == clock.now() + timedelta(hours=24)
    assert issued.expires_at == claims.expires_at


async def test_negative_duration_token_is_expired(store, clock):
    service = TokenService(
        make_settings(token_duration=timedelta(hours=-1)), store, clock=clock
    )
    issued = service.issue_token(1, "bob")

    with pytest.raises(TokenExpiredError):
        await service.validate_token(issued.token)


async def test_token_expires_after_duration(service, clock):
    issued = service.issue_token(1, "bob")
    clock.advance(hours=24)
    await service.validate_token(issued.token)

    clock.advance(seconds=1)
    with pytest.raises(TokenExpiredError):
        await service.validate_token(issued.token)


async def test_token_from_the_future_is_not_yet_valid(service, clock):
    issued = service.issue_token(1, "bob")
    clock.advance(seconds=-30)

    with pytest.raises(TokenNotYetValidError):
        await service.validate_token(issued.token)


async def test_tampered_token_is_rejected(service):
    token = service.issue_token(1, "bob").token
    header, payload, sig = token.split(".")
    tampered = f"{header}.{payload[:-2]}{'AA' if payload[-2:] != 'AA' else 'BB'}.{sig}"

    with pytest.raises((BadSignatureError, MalformedTokenError)):
        await service.validate_token(tampered)


async def test_garbage_token_is_malformed(service):
    with pytest.raises(MalformedTokenError):
        await service.validate_token("not-a-token")


async def test_signature_is_checked_before_expiry(service, store, clock):
    other = TokenService(
        make_settings(jwt_signing_key="a-completely-different-key-0123456789"), store, clock=clock
    )
    token = other.issue_token(1, "bob").token
    clock.advance(hours=48)

    with pytest.raises(BadSignatureError):
        await service.validate_token(token)


async def test_revoke_all_invalidates_earlier_tokens_only(service, clock):
    old = service.issue_token(5, "carol")
    clock.advance(seconds=10)

    await service.revoke_all(5)

    with pytest.raises(TokenRevokedError):
        await service.validate_token(old.token)

    same_instant = service.issue_token(5, "carol")
    assert (await service.validate_token(same_instant.token)).user_id == 5

    clock.advance(seconds=1)
    later = service.issue_token(5, "carol")
    assert (await service.validate_token(later.token)).user_id == 5


async def test_revoke_then_immediate_relogin_within_same_second(service, clock):
    clock.set(clock.now().replace(microsecond=250000))
    before = service.issue_token(9, "dave")
    clock.advance(timedelta(microseconds=1))
    await service.revoke_all(9)
    after = service.issue_token(9, "dave")

    with pytest.raises(TokenRevokedError):
        await service.validate_token(before.token)
    await service.validate_token(after.token)


async def test_revocation_is_per_user(service, clock):
    alice = service.issue_token(1, "alice")
    bob = service.issue_token(2, "bob")
    clock.advance(seconds=1)

    await service.revoke_all(1)

    with pytest.raises(TokenRevokedError):
        await service.validate_token(alice.token)
    await service.validate_token(bob.token)


async def test_revoke_before_is_monotonic(service, store, clock):
    t0 = clock.now()
    assert await service.revoke_before(3, t0 + timedelta(hours=2)) == t0 + timedelta(hours=2)

    effective = await service.revoke_before(3, t0 + timedelta(hours=1))

    assert effective == t0 + timedelta(hours=2)
    assert store.get_revoked_before(3) == t0 + timedelta(hours=2)


async def test_revoke_before_with_past_timestamp(service, clock):
    early = service.issue_token(4, "erin")
    clock.advance(minutes=10)
    cutoff = clock.now()
    clock.advance(minutes=10)
    late = service.issue_token(4, "erin")

    await service.revoke_before(4, cutoff)

    with pytest.raises(TokenRevokedError):
        await service.validate_token(early.token)
    await service.validate_token(late.token)


async def test_revocation_lapses_after_window(store, clock):
    service = TokenService(
        make_settings(
            token_duration=timedelta(hours=48), revocation_window=timedelta(hours=24)
        ),
        store,
        clock=clock,
    )
    token = service.issue_token(6, "frank")
    clock.advance(seconds=1)
    await service.revoke_all(6)

    clock.advance(hours=23)
    with pytest.raises(TokenRevokedError):
        await service.validate_token(token.token)

    clock.advance(hours=2)
    assert (await service.validate_token(token.token)).user_id == 6


async def test_cache_is_invalidated_by_revoke(service, cache, clock):
    first = service.issue_token(7, "gina")
    clock.advance(seconds=1)
    await service.revoke_all(7)
    with pytest.raises(TokenRevokedError):
        await service.validate_token(first.token)
    assert await cache.get_revoked_before(7) is not None

    clock.advance(seconds=1)
    second = service.issue_token(7, "gina")
    await service.validate_token(second.token)
    clock.advance(seconds=1)
    await service.revoke_all(7)

    assert await cache.get_revoked_before(7) is None
    with pytest.raises(TokenRevokedError):
        await service.validate_token(second.token)


async def test_concurrent_revokes_keep_maximum(service, store, clock):
    base = clock.now()
    stamps = [base + timedelta(seconds=s) for s in (5, 1, 9, 3, 7)]

    await asyncio.gather(*(service.revoke_before(11, ts) for ts in stamps))

    assert store.get_revoked_before(11) == base + timedelta(seconds=9)


def test_threaded_revokes_keep_maximum(service, store, clock):
    base = clock.now()
    errors = []

    def worker(offset):
        try:
            asyncio.run(service.revoke_before(12, base + timedelta(seconds=offset)))
        except Exception as exc:  # pragma: no cover - surfaced via assertion
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.get_revoked_before(12) == base + timedelta(seconds=19)


async def test_works_without_cache(store, clock):
    service = TokenService(make_settings(), store, None, clock=clock)
    token = service.issue_token(13, "hank")
    clock.advance(seconds=1)
    await service.revoke_all(13)

    with pytest.raises(TokenRevokedError):
        await service.validate_token(token.token)


def test_issue_logs_without_token(service, recording_logger):
    issued = service.issue_token(1, "alice")

    assert "token_issued" in recording_logger.events("info")
    for _, _, fields in recording_logger.records:
        assert issued.token not in [str(v) for v in fields.values()]


def test_empty_signing_key_fails_construction(store):
    settings = make_settings()
    settings.jwt_signing_key = ""
    with pytest.raises(ConfigurationError):
        TokenService(settings, store)


async def test_in_process_cache_does_not_retain_lapsed_users(store, cache, clock, service):
    tokens = [service.issue_token(user_id, f"user{user_id}") for user_id in range(500)]
    clock.advance(seconds=1)
    for user_id, issued in enumerate(tokens):
        await service.revoke_all(user_id)
        with pytest.raises(TokenRevokedError):
            await service.validate_token(issued.token)
    assert len(cache) == 500

    clock.advance(days=30)
    for user_id in range(1000, 1010):
        assert await service.is_token_revoked(user_id, clock.now()) is False

    assert len(cache) == 0
