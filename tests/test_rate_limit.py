from types import SimpleNamespace

import pytest
import redis

from fitos.middleware import rate_limit
from fitos.middleware.rate_limit import RateLimitMiddleware


class FakeRedis:
    """Just enough of redis.Redis for the token bucket."""

    def __init__(self):
        self.store = {}

    def mget(self, *keys):
        return [self.store.get(key) for key in keys]

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.pending = []

    def setex(self, key, ttl, value):
        self.pending.append((key, str(value)))

    def execute(self):
        self.client.store.update(self.pending)
        self.pending = []


class BrokenRedis:
    def mget(self, *keys):
        raise redis.ConnectionError("down")


def _tenant(per_minute=None, burst=None):
    return SimpleNamespace(id="tenant-1", rate_limit_per_minute=per_minute, rate_limit_burst=burst)


def test_bucket_allows_burst_then_blocks():
    limiter = RateLimitMiddleware(app=None)
    client = FakeRedis()
    tenant = _tenant(per_minute=60, burst=3)

    results = [limiter._check_rate_limit(client, tenant) for _ in range(4)]

    assert [allowed for allowed, _ in results] == [True, True, True, False]
    assert results[-1][1] >= 1


def test_bucket_refills_over_time(monkeypatch):
    limiter = RateLimitMiddleware(app=None)
    client = FakeRedis()
    tenant = _tenant(per_minute=60, burst=1)
    clock = {"now": 1000.0}
    monkeypatch.setattr(rate_limit.time, "time", lambda: clock["now"])

    assert limiter._check_rate_limit(client, tenant)[0]
    assert not limiter._check_rate_limit(client, tenant)[0]

    clock["now"] += 1.5
    assert limiter._check_rate_limit(client, tenant)[0]


def test_redis_errors_fail_open():
    limiter = RateLimitMiddleware(app=None)

    assert limiter._check_rate_limit(BrokenRedis(), _tenant()) == (True, 0)


@pytest.fixture
def limited(settings, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: fake)
    return fake


def test_middleware_returns_429(client, db, tenant, owner_headers, limited):
    tenant.rate_limit_per_minute = 1
    tenant.rate_limit_burst = 2
    db.commit()

    statuses = [client.get("/api/v1/users/me", headers=owner_headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    blocked = client.get("/api/v1/users/me", headers=owner_headers)
    assert blocked.json()["type"] == "rate_limit_exceeded"
    assert int(blocked.headers["Retry-After"]) >= 1


def test_public_routes_are_not_limited(client, limited):
    statuses = {client.get("/health").status_code for _ in range(20)}

    assert statuses == {200}
