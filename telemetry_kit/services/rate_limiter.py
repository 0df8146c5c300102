import time

import redis.asyncio as redis
from fastapi import Depends, Response, status
from loguru import logger

from telemetry_kit.core.config import settings
from telemetry_kit.db.models.api_token import ApiToken, TokenTier
from telemetry_kit.services.auth_service import authenticate_request
from telemetry_kit.utils.http_errors import api_error
from telemetry_kit.utils.redis_client import get_redis


WINDOW_SECS = 60


def tier_limit(tier: TokenTier) -> int | None:
    """Requests per minute for a tier, None when unlimited"""
    limits = {
        TokenTier.FREE: settings.rate_limit.free_rpm,
        TokenTier.PRO: settings.rate_limit.pro_rpm,
        TokenTier.BUSINESS: settings.rate_limit.business_rpm,
    }
    return limits.get(TokenTier(tier))


async def hit(redis_client: redis.Redis, token_id: int, now: int) -> int:
    """Count one request in the current fixed window and return the total so far"""
    key = f"ratelimit:{token_id}:{now // WINDOW_SECS}"
    async with redis_client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.expire(key, WINDOW_SECS)
        count, _ = await pipe.execute()
    return count


async def enforce_rate_limit(
    response: Response,
    token: ApiToken = Depends(authenticate_request),
    redis_client: redis.Redis = Depends(get_redis),
) -> ApiToken:
    limit = tier_limit(token.tier)
    if limit is None:
        return token

    now = int(time.time())
    try:
        count = await hit(redis_client, token.id, now)
    except redis.RedisError:
        raise api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Rate limit check failed"
        )

    reset_at = (now // WINDOW_SECS + 1) * WINDOW_SECS

    if count > limit:
        retry_after = reset_at - now
        logger.info(f"Rate limit exceeded for token {token.id} ({count}/{limit})")
        raise api_error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "rate_limit_exceeded",
            "Rate limit exceeded for this token",
            headers={
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(reset_at),
                "Retry-After": str(retry_after),
            },
            retry_after=retry_after,
        )

    response.headers["X-RateLimit-Limit"] = str(limit)
    response.headers["X-RateLimit-Remaining"] = str(limit - count)
    response.headers["X-RateLimit-Reset"] = str(reset_at)
    return token
