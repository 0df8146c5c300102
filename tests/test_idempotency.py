import json
import uuid
from typing import List

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from telemetry_kit.db.models.event import StoredEvent
from telemetry_kit.services.event_processor import process_events


@pytest.fixture
def sample_events(make_event) -> List[dict]:
    duplicate_id = uuid.uuid4()

    events = [
        make_event(),
        make_event(event_id=duplicate_id),
        make_event(event_id=duplicate_id),
        make_event(),
    ]
    return [json.loads(event.to_json()) for event in events]


async def stored_count(db) -> int:
    async with db.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(StoredEvent))


@pytest.mark.asyncio
async def test_event_idempotency_counting(server_db, sample_events):
    accepted, errors = await process_events(sample_events, "org-1", "app-1")

    assert accepted == 3
    assert [e.error for e in errors] == ["duplicate"]
    assert str(errors[0].event_id) == sample_events[2]["event_id"]
    assert accepted + len(errors) == len(sample_events)
    assert await stored_count(server_db) == 3


@pytest.mark.asyncio
async def test_resent_batch_is_fully_rejected(server_db, sample_events):
    await process_events(sample_events, "org-1", "app-1")

    accepted, errors = await process_events(sample_events, "org-1", "app-1")

    assert accepted == 0
    assert {e.error for e in errors} == {"duplicate"}
    assert await stored_count(server_db) == 3


@pytest.mark.asyncio
async def test_unique_violation_counts_as_duplicate(server_db, sample_events, mocker):
    mocker.patch(
        "telemetry_kit.services.event_processor.store_event",
        side_effect=IntegrityError("INSERT", {}, Exception("unique")),
    )

    accepted, errors = await process_events(sample_events[:1], "org-1", "app-1")

    assert accepted == 0
    assert errors[0].error == "duplicate"


@pytest.mark.asyncio
async def test_storage_failure_is_reported_per_event(server_db, sample_events, mocker):
    mocker.patch(
        "telemetry_kit.services.event_processor.store_event",
        side_effect=[True, OperationalError("INSERT", {}, Exception("disk I/O error"))],
    )

    accepted, errors = await process_events([sample_events[0], sample_events[3]], "org-1", "app-1")

    assert accepted == 1
    assert errors[0].error == "database_error"
    assert str(errors[0].event_id) == sample_events[3]["event_id"]
