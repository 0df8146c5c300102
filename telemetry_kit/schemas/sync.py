from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel


# Per-event rejection codes returned by the ingestion endpoint
UNSUPPORTED_SCHEMA = "unsupported_schema"
INVALID_SCHEMA = "invalid_schema"
DUPLICATE = "duplicate"
DATABASE_ERROR = "database_error"

# Rejections that will never succeed on a resend
PERMANENT_REJECTIONS = frozenset({UNSUPPORTED_SCHEMA, INVALID_SCHEMA, DUPLICATE})


class EventError(BaseModel):
    event_id: Optional[UUID] = None
    error: str
    message: str


class SyncResponse(BaseModel):
    """Body of a 200 (success) or 207 (partial) ingestion response."""
    status: Literal["success", "partial"]
    accepted: int = 0
    rejected: int = 0
    message: Optional[str] = None
    errors: List[EventError] = []

    @property
    def is_success(self) -> bool:
        return self.status == "success"


class ErrorDetail(BaseModel):
    error: str
    message: str
    retry_after: Optional[int] = None
    errors: List[EventError] = []


class IngestRequest(BaseModel):
    # items are validated one by one so a malformed event only rejects itself
    events: List[Any]
