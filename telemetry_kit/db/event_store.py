import asyncio
import time
from pathlib import Path
from typing import Iterable, List, Optional, Union
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from telemetry_kit.core.errors import DatabaseError
from telemetry_kit.schemas.events import BufferedEvent, Event


RETENTION_DAYS = 7

metadata = MetaData()

events_table = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(36), unique=True, nullable=False),
    Column("event_data", Text, nullable=False),
    Column("created_at", Float, nullable=False),
    Column("synced_at", Float, nullable=True),
    Column("retry_count", Integer, nullable=False, server_default="0"),
    Index("idx_synced_at", "synced_at"),
    Index("idx_created_at", "created_at"),
)


def _ids(event_ids: Iterable[Union[UUID, str]]) -> List[str]:
    return [str(event_id) for event_id in event_ids]


class EventStore:
    """
    Durable local buffer of telemetry events (SQLite).

    Every write commits before returning, so an acknowledged `insert`
    survives a crash. Writes are serialized through one lock, reads share
    the engine freely.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, db_path: Union[str, Path, None] = None) -> "EventStore":
        """Open (and create if needed) the store. `None` gives an in-memory store."""
        try:
            if db_path is None:
                engine = create_async_engine(
                    "sqlite+aiosqlite://",
                    poolclass=StaticPool,
                )
            else:
                path = Path(db_path).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                engine = create_async_engine(f"sqlite+aiosqlite:///{path}")

            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseError(f"Failed to open event store: {e}") from e

        logger.debug(f"Event store opened at {db_path or ':memory:'}")
        return cls(engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def insert(self, event: Event) -> None:
        values = {
            "event_id": str(event.event_id),
            "event_data": event.to_json(),
            "created_at": time.time(),
        }
        async with self._write_lock:
            try:
                async with self.engine.begin() as conn:
                    await conn.execute(events_table.insert().values(**values))
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to insert event {event.event_id}: {e}") from e

    async def get_unsynced(self, limit: int) -> List[BufferedEvent]:
        stmt = (
            select(events_table)
            .where(events_table.c.synced_at.is_(None))
            .order_by(events_table.c.created_at.asc(), events_table.c.id.asc())
            .limit(limit)
        )
        try:
            async with self.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to read unsynced events: {e}") from e

        return [self._to_record(row) for row in rows]

    async def get_record(self, event_id: Union[UUID, str]) -> Optional[BufferedEvent]:
        stmt = select(events_table).where(events_table.c.event_id == str(event_id))
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to read event {event_id}: {e}") from e

        return self._to_record(row) if row is not None else None

    async def mark_synced(self, event_ids: Iterable[Union[UUID, str]]) -> int:
        """Set synced_at on pending events. Already synced ids are left untouched."""
        ids = _ids(event_ids)
        if not ids:
            return 0

        stmt = (
            events_table.update()
            .where(events_table.c.event_id.in_(ids))
            .where(events_table.c.synced_at.is_(None))
            .values(synced_at=time.time())
        )
        return await self._write(stmt, "mark events as synced")

    async def increment_retry(self, event_ids: Iterable[Union[UUID, str]]) -> int:
        ids = _ids(event_ids)
        if not ids:
            return 0

        stmt = (
            events_table.update()
            .where(events_table.c.event_id.in_(ids))
            .values(retry_count=events_table.c.retry_count + 1)
        )
        return await self._write(stmt, "increment retry count")

    async def unsynced_count(self) -> int:
        return await self._count(events_table.c.synced_at.is_(None))

    async def total_count(self) -> int:
        return await self._count()

    async def cleanup_old_events(self, retention_days: int = RETENTION_DAYS) -> int:
        """Delete synced events older than the retention horizon. Pending events are kept."""
        horizon = time.time() - retention_days * 24 * 60 * 60
        stmt = (
            events_table.delete()
            .where(events_table.c.synced_at.is_not(None))
            .where(events_table.c.synced_at < horizon)
        )
        deleted = await self._write(stmt, "clean up old events")
        if deleted:
            logger.info(f"Removed {deleted} synced events older than {retention_days} days")
        return deleted

    async def _write(self, stmt, action: str) -> int:
        async with self._write_lock:
            try:
                async with self.engine.begin() as conn:
                    result = await conn.execute(stmt)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to {action}: {e}") from e
        return result.rowcount

    async def _count(self, *criteria) -> int:
        stmt = select(func.count()).select_from(events_table)
        for criterion in criteria:
            stmt = stmt.where(criterion)
        try:
            async with self.engine.connect() as conn:
                return (await conn.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count events: {e}") from e

    @staticmethod
    def _to_record(row) -> BufferedEvent:
        try:
            event = Event.model_validate_json(row["event_data"])
        except ValidationError as e:
            raise DatabaseError(f"Corrupted event data for {row['event_id']}: {e}") from e
        return BufferedEvent(
            event=event,
            created_at=row["created_at"],
            synced_at=row["synced_at"],
            retry_count=row["retry_count"],
        )
