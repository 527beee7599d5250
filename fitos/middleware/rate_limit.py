"""
Rate Limiting Middleware

Per-tenant token bucket in Redis.

- Bucket holds up to `burst` tokens and refills at `rate_limit / 60` per
  second; each request consumes one token.
- Limits come from the tenant row (rate_limit_per_minute /
  rate_limit_burst) or the RATE_LIMIT_* settings.
- When Redis is unavailable requests are allowed (availability over strict
  limiting).

Must run inside TenantMiddleware: it reads request.state.tenant.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from typing import Tuple
import redis
import time
import logging
from fitos.cache import get_redis_client, make_key
from fitos.config import get_settings
from fitos.utils.logging import log_security_event

logger = logging.getLogger(__name__)

BUCKET_TTL_SECONDS = 120


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket rate limiter per tenant."""

    async def dispatch(self, request: Request, call_next):
        settings = get_settings()
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        tenant = getattr(request.state, "tenant", None)
        if not tenant:
            # Public route, no tenant context
            return await call_next(request)

        client = get_redis_client()
        if client is None:
            logger.debug("Rate limiting skipped - Redis unavailable")
            return await call_next(request)

        allowed, retry_after = self._check_rate_limit(client, tenant)

        if not allowed:
            log_security_event(
                "rate_limit_exceeded",
                {"tenant_id": tenant.id, "path": request.url.path, "retry_after": retry_after},
                logger,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "type": "rate_limit_exceeded",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    def _check_rate_limit(self, client: redis.Redis, tenant) -> Tuple[bool, int]:
        """
        Check if request is allowed under rate limit.

        Returns: (allowed, retry_after_seconds)
        """
        settings = get_settings()
        rate_limit = tenant.rate_limit_per_minute or settings.RATE_LIMIT_PER_MINUTE
        burst = tenant.rate_limit_burst or settings.RATE_LIMIT_BURST
        refill_per_second = rate_limit / 60.0

        key = make_key("ratelimit", tenant.id)
        key_timestamp = f"{key}:ts"

        try:
            current_tokens, last_update = client.mget(key, key_timestamp)
            now = time.time()

            if current_tokens is None:
                tokens = burst - 1
            else:
                last_update = float(last_update) if last_update else now
                elapsed = max(0.0, now - last_update)
                tokens = min(burst, float(current_tokens) + elapsed * refill_per_second)
                if tokens < 1:
                    retry_after = int((1 - tokens) / refill_per_second) + 1
                    return False, retry_after
                tokens -= 1

            pipe = client.pipeline()
            pipe.setex(key, BUCKET_TTL_SECONDS, tokens)
            pipe.setex(key_timestamp, BUCKET_TTL_SECONDS, now)
            pipe.execute()
            return True, 0

        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0
