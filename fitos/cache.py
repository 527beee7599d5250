"""
Redis Cache

Small read-through JSON cache shared by the plan catalog, sidebar defaults
and tenant usage. Every call degrades to a cache miss when Redis is
disabled or unreachable; callers always fall back to the database.
"""
from typing import Any, Optional
import json
import logging
import threading
import redis
from fitos.config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "fitos"

_lock = threading.Lock()
_client: Optional[redis.Redis] = None
_unavailable = False


def make_key(*parts: str) -> str:
    """Namespaced key, e.g. make_key("tenant", tenant_id, "usage")."""
    return ":".join([KEY_PREFIX, *(str(part).strip(":") for part in parts if part)])


def get_redis_client() -> Optional[redis.Redis]:
    """
    Return the shared Redis client, or None when Redis can't be used.

    The first failed ping marks Redis as unavailable for the life of the
    process; call reset_client() to try again.
    """
    global _client, _unavailable
    if _unavailable:
        return None
    if _client is None:
        with _lock:
            if _client is None and not _unavailable:
                settings = get_settings()
                try:
                    client = redis.from_url(
                        settings.REDIS_URL,
                        decode_responses=True,
                        socket_connect_timeout=2,
                    )
                    client.ping()
                    _client = client
                    logger.info("Redis connection established")
                except (redis.ConnectionError, redis.TimeoutError) as e:
                    logger.error(f"Redis connection failed: {e}")
                    _unavailable = True
                    return None
    return _client


def reset_client() -> None:
    global _client, _unavailable
    with _lock:
        _client = None
        _unavailable = False


def _cache_client() -> Optional[redis.Redis]:
    if not get_settings().CACHE_ENABLED:
        return None
    return get_redis_client()


def cache_get(key: str) -> Optional[Any]:
    """Return the decoded JSON value, or None on a miss or Redis error."""
    client = _cache_client()
    if client is None:
        return None
    try:
        value = client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis cache get failed for {key}: {e}")
        return None
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        logger.warning(f"Discarding undecodable cache entry {key}")
        return None


def cache_set(key: str, value: Any, ttl: int = 3600) -> None:
    client = _cache_client()
    if client is None:
        return
    try:
        client.setex(key, ttl, json.dumps(value, default=str))
    except redis.RedisError as e:
        logger.warning(f"Redis cache set failed for {key}: {e}")


def cache_delete(*keys: str) -> None:
    client = _cache_client()
    if client is None or not keys:
        return
    try:
        client.delete(*keys)
    except redis.RedisError as e:
        logger.warning(f"Redis cache delete failed for {keys}: {e}")


def invalidate_tenant(tenant_id: str) -> None:
    """Drop every cached value derived from a tenant's plan or users."""
    cache_delete(
        make_key("tenant", tenant_id, "usage"),
        make_key("tenant", tenant_id, "subscription"),
    )
