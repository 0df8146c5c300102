from typing import Optional

from fastapi import APIRouter, Depends, Header, Response, status
from loguru import logger

from telemetry_kit.core.config import settings
from telemetry_kit.db.models.api_token import ApiToken
from telemetry_kit.schemas.sync import IngestRequest, SyncResponse
from telemetry_kit.services import event_processor
from telemetry_kit.services.rate_limiter import enforce_rate_limit
from telemetry_kit.utils.http_errors import api_error

ingest_router = APIRouter(prefix="/v1/ingest")


def _bad_request(message: str, **extra):
    return api_error(status.HTTP_400_BAD_REQUEST, "bad_request", message, **extra)


@ingest_router.post(
    "/{org_id}/{app_id}",
    response_model=SyncResponse,
    responses={
        207: {"model": SyncResponse, "description": "Some events were rejected"},
        204: {"description": "Dropped, the client sent DNT: 1"},
    },
)
async def ingest_events(
    org_id: str,
    app_id: str,
    batch: IngestRequest,
    response: Response,
    token: ApiToken = Depends(enforce_rate_limit),
    dnt: Optional[str] = Header(None),
    x_batch_size: Optional[str] = Header(None),
):
    """Accepts a signed batch of events and stores each valid, previously unseen event."""

    if dnt == "1":
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    count = len(batch.events)
    if count == 0:
        raise _bad_request("Batch must contain at least one event")
    if count > settings.ingest.max_batch_size:
        raise _bad_request(f"Batch size exceeds maximum of {settings.ingest.max_batch_size} events")
    if x_batch_size is not None and x_batch_size.isdigit() and int(x_batch_size) != count:
        raise _bad_request("X-Batch-Size header does not match actual batch size")

    accepted, errors = await event_processor.process_events(batch.events, org_id, app_id)

    if not errors:
        return SyncResponse(
            status="success",
            accepted=accepted,
            rejected=0,
            message="All events ingested successfully",
        )

    if accepted == 0:
        logger.warning(f"All {count} events rejected for token {token.id}")
        raise _bad_request(
            "All events rejected",
            errors=[error.model_dump(mode="json") for error in errors],
        )

    response.status_code = status.HTTP_207_MULTI_STATUS
    return SyncResponse(status="partial", accepted=accepted, rejected=len(errors), errors=errors)
