import time
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Header, Request, status
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_kit.core.config import settings
from telemetry_kit.db.db_helper import db_helper
from telemetry_kit.db.models.api_token import ApiToken, TokenTier
from telemetry_kit.services.signer import HmacSigner
from telemetry_kit.utils.http_errors import api_error
from telemetry_kit.utils.redis_client import get_redis


class TokenService:

    @db_helper.connection
    async def get_active_token(self, token: str, *, session: AsyncSession) -> Optional[ApiToken]:
        stmt = select(ApiToken).where(ApiToken.token == token, ApiToken.is_active.is_(True))
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @db_helper.connection
    async def create_token(
        self,
        org_id: str,
        app_id: str,
        token: str,
        secret: str,
        tier: TokenTier | str = TokenTier.FREE,
        *,
        session: AsyncSession,
    ) -> ApiToken:
        db_token = ApiToken(org_id=org_id, app_id=app_id, token=token, secret=secret, tier=TokenTier(tier))
        session.add(db_token)
        await session.commit()
        logger.info(f"API token created for {org_id}/{app_id} (ID: {db_token.id}, tier: {db_token.tier.value})")
        return db_token

    @db_helper.connection
    async def touch_last_used(self, token_id: int, *, session: AsyncSession) -> None:
        stmt = (
            update(ApiToken)
            .where(ApiToken.id == token_id)
            .values(last_used_at=datetime.now(timezone.utc))
        )
        await session.execute(stmt)
        await session.commit()


token_service = TokenService()


async def _touch_last_used(token_id: int) -> None:
    try:
        await token_service.touch_last_used(token_id)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to update last_used_at for token {token_id}: {e}")


def _unauthorized(message: str):
    return api_error(status.HTTP_401_UNAUTHORIZED, "unauthorized", message)


async def authenticate_request(
    request: Request,
    org_id: str,
    app_id: str,
    authorization: Optional[str] = Header(None),
    x_signature: Optional[str] = Header(None),
    x_timestamp: Optional[str] = Header(None),
    x_nonce: Optional[str] = Header(None),
    redis_client: redis.Redis = Depends(get_redis),
) -> ApiToken:
    """
    Verify the bearer token, the HMAC signature over "{timestamp}:{nonce}:{body}",
    the request freshness and the nonce uniqueness.
    """
    if not x_signature:
        raise _unauthorized("Missing X-Signature header")
    if not x_timestamp:
        raise _unauthorized("Missing X-Timestamp header")
    if not x_nonce:
        raise _unauthorized("Missing X-Nonce header")
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized("Missing or invalid Authorization header")

    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise api_error(status.HTTP_400_BAD_REQUEST, "bad_request", "Invalid UTF-8 in body")

    try:
        token = await token_service.get_active_token(authorization.removeprefix("Bearer "))
    except SQLAlchemyError:
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Database error")
    if token is None:
        raise _unauthorized("Invalid token")

    if not HmacSigner(token.secret).verify(x_timestamp, x_nonce, body, x_signature):
        logger.warning(f"Invalid HMAC signature for token {token.id}")
        raise _unauthorized("Invalid HMAC signature")

    try:
        request_time = int(x_timestamp)
    except ValueError:
        raise api_error(status.HTTP_400_BAD_REQUEST, "bad_request", "Invalid timestamp format")

    if abs(int(time.time()) - request_time) > settings.ingest.timestamp_tolerance_secs:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Timestamp outside acceptable window")

    try:
        fresh = await redis_client.set(
            f"nonce:{x_nonce}", "1", nx=True, ex=settings.ingest.nonce_ttl_secs
        )
    except redis.RedisError:
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Redis error")
    if not fresh:
        logger.warning(f"Replayed nonce from token {token.id}")
        raise api_error(status.HTTP_409_CONFLICT, "conflict", "Duplicate nonce detected")

    if token.org_id != org_id or token.app_id != app_id:
        raise api_error(
            status.HTTP_403_FORBIDDEN,
            "forbidden",
            "Token is not valid for this organization and application",
        )

    await _touch_last_used(token.id)
    return token
