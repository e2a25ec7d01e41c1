from datetime import datetime, timedelta, timezone

from bearerguard.storage.redis_cache import RedisCache

NOW = datetime(2024, 5, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.set_calls = []
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, px=None):
        self.set_calls.append((key, value, px))
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def aclose(self):
        self.closed = True


def make_cache(prefix="bearerguard"):
    cache: RedisCache = RedisCache.__new__(RedisCache)
    cache.redis_url = "redis://test"
    cache.key_prefix = prefix
    cache.client = FakeRedis()
    return cache


def test_keys_are_namespaced_per_user():
    assert make_cache()._revoke_key(5) == "bearerguard:revoke:5"
    assert make_cache("")._revoke_key(5) == "revoke:5"


async def test_set_uses_millisecond_ttl_and_iso_value():
    cache = make_cache()

    await cache.set_revoked_before(5, NOW, timedelta(minutes=90, milliseconds=250))

    assert cache.client.set_calls == [
        ("bearerguard:revoke:5", "2024-05-01T12:00:00.500000+00:00", 5_400_250)
    ]
    assert await cache.get_revoked_before(5) == NOW


async def test_non_positive_ttl_is_not_written():
    cache = make_cache()

    await cache.set_revoked_before(5, NOW, timedelta(0))

    assert cache.client.set_calls == []
    assert await cache.get_revoked_before(5) is None


async def test_unparseable_entry_is_dropped():
    cache = make_cache()
    cache.client.data["bearerguard:revoke:5"] = "not-a-date"

    assert await cache.get_revoked_before(5) is None
    assert "bearerguard:revoke:5" not in cache.client.data


async def test_delete_and_close():
    cache = make_cache()
    await cache.set_revoked_before(5, NOW, timedelta(seconds=5))

    await cache.delete_revoked_before(5)
    await cache.close()

    assert await cache.get_revoked_before(5) is None
    assert cache.client.closed is True
