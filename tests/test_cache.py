import pytest
import redis

from fitos import cache

from tests.conftest import PASSWORD


class FakeRedis:
    """In-memory stand-in for the few commands the cache uses."""

    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


@pytest.fixture
def redis_cache(settings, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(settings, "CACHE_ENABLED", True)
    monkeypatch.setattr(cache.redis, "from_url", lambda *args, **kwargs: fake)
    cache.reset_client()
    yield fake
    cache.reset_client()


def test_unreachable_redis_is_retried_after_reset(monkeypatch):
    def refuse(*args, **kwargs):
        raise redis.ConnectionError("refused")

    monkeypatch.setattr(cache.redis, "from_url", refuse)
    cache.reset_client()
    try:
        assert cache.get_redis_client() is None

        fake = FakeRedis()
        monkeypatch.setattr(cache.redis, "from_url", lambda *args, **kwargs: fake)
        assert cache.get_redis_client() is None

        cache.reset_client()
        assert cache.get_redis_client() is fake
    finally:
        cache.reset_client()


def test_cached_values_round_trip_as_json(redis_cache):
    key = cache.make_key("tenant", "t-1", "usage")

    cache.cache_set(key, {"users": 2})

    assert key == "fitos:tenant:t-1:usage"
    assert cache.cache_get(key) == {"users": 2}
    cache.cache_delete(key)
    assert cache.cache_get(key) is None


def test_signup_refreshes_cached_usage(client, tenant, owner_headers, redis_cache):
    before = client.get("/api/v1/tenants/current/usage", headers=owner_headers).json()
    assert cache.make_key("tenant", tenant.id, "usage") in redis_cache.store

    response = client.post("/api/v1/auth/signup", json={
        "email": "newclient@acme.com",
        "password": PASSWORD,
        "tenant_slug": "acme",
    })
    assert response.status_code == 201

    after = client.get("/api/v1/tenants/current/usage", headers=owner_headers).json()
    assert after["clients"]["current"] == before["clients"]["current"] + 1
