import asyncio
from typing import Optional

from loguru import logger

from telemetry_kit.core.errors import ServerError
from telemetry_kit.db.event_store import EventStore
from telemetry_kit.schemas.config import AutoSyncConfig
from telemetry_kit.schemas.events import EventBatch
from telemetry_kit.schemas.sync import PERMANENT_REJECTIONS, EventError, SyncResponse
from telemetry_kit.services.sync_client import SKIPPED_DNT, SyncClient


async def _settle(store: EventStore, attempted: list[str], response_errors: list[EventError]) -> None:
    """Mark accepted and permanently rejected events synced, everything else stays pending."""
    rejected = {str(err.event_id): err.error for err in response_errors if err.event_id}
    settled = [
        event_id for event_id in attempted
        if event_id not in rejected or rejected[event_id] in PERMANENT_REJECTIONS
    ]
    transient = [event_id for event_id in attempted if event_id not in settled]

    await store.mark_synced(settled)
    if transient:
        await store.increment_retry(transient)
        logger.warning(f"{len(transient)} events were not stored by the server and will be resent")


async def sync_once(
    client: SyncClient,
    store: EventStore,
    batch_size: int,
    lock: asyncio.Lock,
) -> SyncResponse:
    """
    Send one batch of pending events and record the outcome in the store.

    The lock is held from fetch to mark, so concurrent callers never send
    the same pending events twice.
    """
    if client.is_suppressed:
        # nothing is sent, so nothing may be marked synced
        logger.info("DNT is enabled, leaving pending events in the buffer")
        return SyncResponse(status="success", message=SKIPPED_DNT)

    async with lock:
        records = await store.get_unsynced(batch_size)
        if not records:
            logger.debug("No pending events to sync")
            return SyncResponse(status="success", message="No events to sync")

        batch = EventBatch(events=[record.event for record in records])
        attempted = [str(event.event_id) for event in batch.events]

        try:
            response = await client.sync(batch)
        except ServerError as e:
            if e.status == 400 and e.errors:
                # every event was rejected individually
                await _settle(store, attempted, [EventError.model_validate(err) for err in e.errors])
                raise
            await store.increment_retry(attempted)
            raise
        except Exception:
            await store.increment_retry(attempted)
            raise

        await _settle(store, attempted, response.errors)
        logger.info(
            f"Synced batch of {len(attempted)} events: "
            f"{response.accepted} accepted, {response.rejected} rejected"
        )
        return response


class AutoSyncTask:
    """Background task that periodically pushes pending events."""

    def __init__(
        self,
        client: SyncClient,
        store: EventStore,
        config: AutoSyncConfig,
        lock: asyncio.Lock,
    ):
        self.client = client
        self.store = store
        self.config = config
        self.lock = lock
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def start(
        cls,
        client: SyncClient,
        store: EventStore,
        config: AutoSyncConfig,
        lock: asyncio.Lock,
    ) -> "AutoSyncTask":
        auto_sync = cls(client, store, config, lock)
        auto_sync._task = asyncio.create_task(auto_sync._run())
        logger.info(f"Auto-sync started, interval {config.interval}s")
        return auto_sync

    @property
    def should_sync_on_shutdown(self) -> bool:
        return self.config.sync_on_shutdown

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def shutdown(self) -> None:
        self._shutdown.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                await sync_once(self.client, self.store, self.config.batch_size, self.lock)
            except Exception as e:
                logger.error(f"Auto-sync failed: {e}")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.config.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Auto-sync stopped")
