import redis.asyncio as redis
from fastapi import Request

from telemetry_kit.core.config import settings


def create_redis_client(url: str = settings.redis.url) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )


async def get_redis(request: Request) -> redis.Redis:
    """Shared client created in the app lifespan"""
    return request.app.state.redis
