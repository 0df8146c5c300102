import json
import time

import pytest

from telemetry_kit.core.config import settings
from telemetry_kit.db.models.api_token import TokenTier
from telemetry_kit.schemas.events import EventBatch
from telemetry_kit.services.auth_service import token_service
from telemetry_kit.services.rate_limiter import hit, tier_limit


async def create_token(tier, token):
    return await token_service.create_token("org-1", "app-1", token, f"{token}_secret", tier=tier)


async def ingest(app_client, signed_headers, token, make_event):
    body = EventBatch(events=[make_event()]).to_json()
    headers = signed_headers(body, token=token.token, secret=token.secret)
    return await app_client.post(f"/v1/ingest/{token.org_id}/{token.app_id}", content=body, headers=headers)


def test_tier_limits_follow_settings():
    assert tier_limit(TokenTier.FREE) == settings.rate_limit.free_rpm
    assert tier_limit(TokenTier.PRO) == settings.rate_limit.pro_rpm
    assert tier_limit(TokenTier.BUSINESS) == settings.rate_limit.business_rpm
    assert tier_limit(TokenTier.ENTERPRISE) is None


@pytest.mark.asyncio
async def test_hit_counts_in_fixed_window(fake_redis):
    now = 120 * 60 + 5

    assert await hit(fake_redis, 7, now) == 1
    assert await hit(fake_redis, 7, now + 10) == 2
    assert await hit(fake_redis, 7, now + 60) == 1

    assert fake_redis.store["ratelimit:7:120"] == 2
    assert fake_redis.ttls["ratelimit:7:120"] == 60


@pytest.mark.asyncio
async def test_free_tier_limited_after_ceiling(app_client, server_db, signed_headers, make_event, mocker):
    # one second into a window, so the burst cannot straddle a minute boundary
    frozen = (int(time.time()) // 60) * 60 + 1
    mocker.patch("telemetry_kit.services.rate_limiter.time.time", return_value=float(frozen))
    token = await create_token(TokenTier.FREE, "tk_free")
    limit = settings.rate_limit.free_rpm

    responses = [await ingest(app_client, signed_headers, token, make_event) for _ in range(limit + 1)]

    assert [r.status_code for r in responses[:limit]] == [200] * limit
    assert responses[0].headers["X-RateLimit-Limit"] == str(limit)
    assert responses[0].headers["X-RateLimit-Remaining"] == str(limit - 1)
    assert responses[limit - 1].headers["X-RateLimit-Remaining"] == "0"

    blocked = responses[limit]
    assert blocked.status_code == 429
    retry_after = int(blocked.headers["Retry-After"])
    assert retry_after == 59
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert int(blocked.headers["X-RateLimit-Reset"]) == frozen + 59
    assert blocked.json()["detail"]["error"] == "rate_limit_exceeded"
    assert blocked.json()["detail"]["retry_after"] == retry_after


@pytest.mark.asyncio
async def test_enterprise_tier_is_unlimited(app_client, server_db, signed_headers, make_event, fake_redis):
    token = await create_token(TokenTier.ENTERPRISE, "tk_enterprise")

    for _ in range(settings.rate_limit.free_rpm + 2):
        response = await ingest(app_client, signed_headers, token, make_event)
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    assert not any(key.startswith("ratelimit:") for key in fake_redis.store)


@pytest.mark.asyncio
async def test_rejected_request_is_not_counted(app_client, server_db, signed_headers, make_event, fake_redis):
    token = await create_token(TokenTier.FREE, "tk_free")
    body = json.dumps({"events": []})
    headers = signed_headers(body, token=token.token, secret="wrong")

    response = await app_client.post(f"/v1/ingest/{token.org_id}/{token.app_id}", content=body, headers=headers)

    assert response.status_code == 401
    assert not any(key.startswith("ratelimit:") for key in fake_redis.store)
