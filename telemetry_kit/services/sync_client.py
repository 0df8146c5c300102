import asyncio
import os
import time
import uuid
from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from telemetry_kit.core.errors import (
    AuthError,
    HttpError,
    MaxRetriesExceededError,
    RateLimitExceededError,
    SerializationError,
    ServerError,
    TelemetryError,
)
from telemetry_kit.schemas.config import SyncConfig
from telemetry_kit.schemas.events import SCHEMA_VERSION, SDK_NAME, SDK_VERSION, EventBatch
from telemetry_kit.schemas.sync import ErrorDetail, SyncResponse
from telemetry_kit.services.retry import RetryStrategy
from telemetry_kit.services.signer import HmacSigner


DEFAULT_RETRY_AFTER = 60
SKIPPED_DNT = "Skipped: DNT enabled"

# Statuses that describe a problem with the request itself, resending won't help
CLIENT_ERROR_STATUSES = frozenset({400, 401, 403, 409, 413, 422})
AUTH_ERROR_STATUSES = frozenset({401, 403})


def is_dnt_enabled() -> bool:
    return os.environ.get("DNT", "").strip() == "1"


class SyncClient:
    """
    Pushes event batches to the ingestion endpoint.

    Each attempt is signed with a fresh timestamp and nonce, so a retried
    request is never rejected as a replay of the previous one.
    """

    def __init__(
        self,
        config: SyncConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config.validate_config()
        self.signer = HmacSigner(config.secret)
        self.retry_strategy = RetryStrategy(config.max_retries, config.base_delay_ms)
        self._http = httpx.AsyncClient(timeout=config.timeout_secs, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def is_suppressed(self) -> bool:
        """True when DNT asks us not to send anything."""
        return self.config.respect_dnt and is_dnt_enabled()

    async def sync(self, batch: EventBatch) -> SyncResponse:
        if batch.is_empty():
            return SyncResponse(status="success", message="No events to sync")

        if self.is_suppressed:
            logger.info("DNT is enabled, skipping sync")
            return SyncResponse(status="success", message=SKIPPED_DNT)

        attempt = 0
        while True:
            try:
                return await self._try_sync(batch)
            except TelemetryError as e:
                if not e.retryable:
                    raise
                if not self.retry_strategy.should_retry(attempt):
                    logger.error(f"Sync failed after {attempt + 1} attempts: {e}")
                    raise MaxRetriesExceededError(e) from e

                delay = self.retry_strategy.delay_for(attempt)
                logger.warning(f"Sync attempt {attempt + 1} failed ({e}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)
                attempt += 1

    async def _try_sync(self, batch: EventBatch) -> SyncResponse:
        timestamp = str(int(time.time()))
        nonce = str(uuid.uuid4())
        body = batch.to_json()

        headers = {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
            "X-Signature": self.signer.sign(timestamp, nonce, body),
            "X-Timestamp": timestamp,
            "X-Nonce": nonce,
            "X-Batch-Size": str(batch.size()),
            "X-SDK-Version": f"{SDK_NAME}/{SDK_VERSION}",
            "X-Schema-Version": SCHEMA_VERSION,
        }

        try:
            response = await self._http.post(
                self.config.ingestion_url(),
                content=body.encode("utf-8"),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise HttpError(f"Request to {self.config.ingestion_url()} failed: {e}") from e

        logger.debug(f"Ingestion responded {response.status_code} for {batch.size()} events")
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> SyncResponse:
        status = response.status_code

        if status in (200, 207):
            try:
                return SyncResponse.model_validate_json(response.content)
            except ValidationError as e:
                raise SerializationError(f"Unexpected ingestion response body: {e}") from e

        if status == 429:
            detail = self._error_detail(response)
            retry_after = detail.retry_after if detail and detail.retry_after else None
            if retry_after is None:
                retry_after = _parse_int(response.headers.get("Retry-After"), DEFAULT_RETRY_AFTER)
            raise RateLimitExceededError(retry_after)

        if status in AUTH_ERROR_STATUSES:
            detail = self._error_detail(response)
            raise AuthError(status, f"{detail.error}: {detail.message}" if detail else response.text)

        if status in CLIENT_ERROR_STATUSES or status >= 500:
            detail = self._error_detail(response)
            if detail is not None:
                raise ServerError(status, f"{detail.error}: {detail.message}", detail.errors)
            raise ServerError(status, response.text)

        raise TelemetryError(f"Unexpected status code {status}: {response.text}")

    @staticmethod
    def _error_detail(response: httpx.Response) -> Optional[ErrorDetail]:
        """Parse the `{"detail": {...}}` error body, None when it has another shape."""
        try:
            payload: Any = response.json()
        except ValueError:
            return None

        detail = payload.get("detail") if isinstance(payload, dict) else None
        if not isinstance(detail, dict):
            return None
        try:
            return ErrorDetail.model_validate(detail)
        except ValidationError:
            return None


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default
