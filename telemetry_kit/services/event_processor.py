from typing import Any, List, Optional, Tuple
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_kit.core.config import settings
from telemetry_kit.db.db_helper import db_helper
from telemetry_kit.db.models.event import StoredEvent
from telemetry_kit.schemas.events import Event
from telemetry_kit.schemas.sync import (
    DATABASE_ERROR,
    DUPLICATE,
    INVALID_SCHEMA,
    UNSUPPORTED_SCHEMA,
    EventError,
)


REQUIRED_FIELDS = ("event_id", "timestamp", "service", "user_id", "environment", "event")


class EventRejected(Exception):
    def __init__(self, error: str, message: str):
        self.error = error
        self.message = message
        super().__init__(f"{error}: {message}")


def _event_id(raw: Any) -> Optional[UUID]:
    if not isinstance(raw, dict):
        return None
    try:
        return UUID(str(raw.get("event_id")))
    except ValueError:
        return None


def validate_event(raw: Any) -> Event:
    """Check one incoming event, raising EventRejected with the rejection code."""
    if not isinstance(raw, dict):
        raise EventRejected(INVALID_SCHEMA, "Event must be a JSON object")

    missing = [field for field in REQUIRED_FIELDS if field not in raw]
    if missing:
        raise EventRejected(INVALID_SCHEMA, f"Missing required field: {missing[0]}")

    schema_version = raw.get("schema_version")
    if not isinstance(schema_version, str):
        raise EventRejected(INVALID_SCHEMA, "Missing required field: schema_version")
    if not schema_version.startswith(settings.ingest.supported_schema_prefix):
        raise EventRejected(UNSUPPORTED_SCHEMA, f"Unsupported schema version: {schema_version}")

    try:
        event = Event.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise EventRejected(INVALID_SCHEMA, f"Invalid field {location}: {first['msg']}") from e

    if not event.service.name:
        raise EventRejected(INVALID_SCHEMA, "Missing required field: service.name")
    if not event.service.version:
        raise EventRejected(INVALID_SCHEMA, "Missing required field: service.version")
    # ServiceInfo fills in the SDK's own language, the wire format requires it
    if not raw["service"].get("language"):
        raise EventRejected(INVALID_SCHEMA, "Missing required field: service.language")
    if not event.user_id.startswith("client_"):
        raise EventRejected(INVALID_SCHEMA, "Invalid user_id format")

    return event


@db_helper.connection
async def store_event(event: Event, org_id: str, app_id: str, *, session: AsyncSession) -> bool:
    """Persist one event in its own transaction. False when the event_id is already stored."""
    existing = await session.scalar(
        select(StoredEvent.id).where(StoredEvent.event_id == event.event_id)
    )
    if existing is not None:
        return False

    session.add(
        StoredEvent(
            event_id=event.event_id,
            org_id=org_id,
            app_id=app_id,
            schema_version=event.schema_version,
            timestamp=event.timestamp,
            service_name=event.service.name,
            service_version=event.service.version,
            service_language=event.service.language,
            service_language_version=event.service.language_version,
            user_id=event.user_id,
            session_id=event.session_id,
            os=event.environment.os,
            os_version=event.environment.os_version,
            arch=event.environment.arch,
            ci=event.environment.ci,
            shell=event.environment.shell,
            event_type=event.event.event_type,
            event_category=event.event.category,
            event_data=event.event.data,
            sdk_version=event.metadata.sdk_version,
            transmission_timestamp=event.metadata.transmission_timestamp,
            batch_size=event.metadata.batch_size,
            retry_count=event.metadata.retry_count,
        )
    )
    await session.commit()
    return True


async def process_events(events: List[Any], org_id: str, app_id: str) -> Tuple[int, List[EventError]]:
    """
    Validate and store every event independently.

    A rejected event never affects the others; the caller gets the number of
    accepted events and one EventError per rejected event.
    """
    accepted = 0
    errors: List[EventError] = []

    for raw in events:
        try:
            event = validate_event(raw)
            try:
                stored = await store_event(event, org_id, app_id)
            except IntegrityError:
                # lost a race with a concurrent insert of the same event_id
                stored = False
            except SQLAlchemyError as e:
                raise EventRejected(DATABASE_ERROR, f"Failed to store event: {e}") from e

            if not stored:
                raise EventRejected(DUPLICATE, "Event already exists")
            accepted += 1
        except EventRejected as e:
            errors.append(EventError(event_id=_event_id(raw), error=e.error, message=e.message))

    logger.info(f"Processed {len(events)} events for {org_id}/{app_id}: {accepted} accepted, {len(errors)} rejected")
    return accepted, errors
