import asyncio
import platform
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from telemetry_kit.core.errors import InvalidConfigError, InvalidSchemaError, MachineIdError
from telemetry_kit.db.event_store import EventStore
from telemetry_kit.schemas.config import AutoSyncConfig, PrivacyConfig, SyncConfig
from telemetry_kit.schemas.events import (
    Event,
    EventData,
    ServiceInfo,
    command_event_data,
    feature_event_data,
)
from telemetry_kit.schemas.sync import SyncResponse
from telemetry_kit.services.auto_sync import AutoSyncTask, sync_once
from telemetry_kit.services.identity import (
    detect_environment,
    generate_random_user_id,
    generate_session_id,
    generate_user_id,
)
from telemetry_kit.services.privacy import PrivacyManager
from telemetry_kit.services.sync_client import SyncClient


SERVICE_NAME_RE = re.compile(r"^[a-z0-9_-]+$")
DEFAULT_DATA_DIR = Path("~/.telemetry-kit")


class EventStats(BaseModel):
    total_events: int
    unsynced_events: int
    synced_events: int


class TelemetryKit:
    """
    Entry point of the SDK: records events locally and ships them when sync is configured.

    Build instances with `await TelemetryKit.create(...)` and release them
    with `await kit.shutdown()`.
    """

    def __init__(
        self,
        service: ServiceInfo,
        store: EventStore,
        user_id: str,
        sync_client: Optional[SyncClient] = None,
        sync_config: Optional[SyncConfig] = None,
        privacy: Optional[PrivacyManager] = None,
    ):
        self.service = service
        self.store = store
        self.user_id = user_id
        self.session_id = generate_session_id()
        self.environment = detect_environment()
        self.sync_client = sync_client
        self.sync_config = sync_config
        self.privacy = privacy
        self._sync_lock = asyncio.Lock()
        self._auto_sync: Optional[AutoSyncTask] = None

    @classmethod
    async def create(
        cls,
        service_name: str,
        service_version: str = "0.0.0",
        db_path: Union[str, Path, None] = None,
        sync: Optional[SyncConfig] = None,
        auto_sync: bool = False,
        auto_sync_config: Optional[AutoSyncConfig] = None,
        privacy: Optional[PrivacyConfig] = None,
        consent_dir: Union[str, Path, None] = None,
        transport=None,
    ) -> "TelemetryKit":
        if not SERVICE_NAME_RE.match(service_name):
            raise InvalidConfigError(
                "service_name",
                "Must contain only lowercase letters, digits, dashes and underscores",
            )

        if db_path is None:
            db_path = DEFAULT_DATA_DIR.expanduser() / f"{service_name}.db"

        try:
            user_id = generate_user_id()
        except MachineIdError as e:
            logger.warning(f"{e}, falling back to a random user id")
            user_id = generate_random_user_id()

        if sync is not None:
            sync.validate_config()
        store = await EventStore.open(db_path)
        sync_client = SyncClient(sync, transport=transport) if sync is not None else None

        privacy_manager = None
        if privacy is not None:
            privacy_manager = PrivacyManager(privacy, service_name, consent_dir)

        service = ServiceInfo(
            name=service_name,
            version=service_version,
            language_version=platform.python_version(),
        )
        kit = cls(service, store, user_id, sync_client, sync, privacy_manager)

        if auto_sync:
            if sync_client is None:
                await store.close()
                raise InvalidConfigError("auto_sync", "Auto-sync requires a sync configuration")
            kit._auto_sync = AutoSyncTask.start(
                sync_client,
                store,
                auto_sync_config or AutoSyncConfig(),
                kit._sync_lock,
            )

        logger.info(f"Telemetry initialized for {service_name} {service_version}")
        return kit

    async def track_command(
        self,
        command: str,
        *,
        subcommand: Optional[str] = None,
        flags: Iterable[str] = (),
        success: Optional[bool] = None,
        duration_ms: Optional[int] = None,
        exit_code: Optional[int] = None,
    ) -> Optional[Event]:
        data = command_event_data(command, subcommand, flags, success, duration_ms, exit_code)
        return await self._track("command_execution", data, category=command)

    async def track_feature(
        self,
        feature: str,
        *,
        method: Optional[str] = None,
        success: Optional[bool] = None,
        **data: Any,
    ) -> Optional[Event]:
        payload = feature_event_data(feature, method, success, **data)
        return await self._track("feature_used", payload, category=feature)

    async def track_custom(self, event_type: str, data: Dict[str, Any]) -> Optional[Event]:
        return await self._track(event_type, data)

    async def _track(
        self,
        event_type: str,
        data: Dict[str, Any],
        category: Optional[str] = None,
    ) -> Optional[Event]:
        """Record an event, None when privacy settings declined it."""
        if self.privacy is not None:
            if not self.privacy.should_track():
                logger.debug(f"Tracking declined by privacy settings, dropping {event_type}")
                return None
            data = self.privacy.sanitize_data(data)

        if not event_type:
            raise InvalidSchemaError("Event type cannot be empty")
        try:
            event = Event(
                service=self.service,
                user_id=self.user_id,
                session_id=self.session_id,
                environment=self.environment,
                event=EventData(event_type=event_type, category=category, data=data),
            )
        except ValidationError as e:
            raise InvalidSchemaError(f"Cannot build {event_type} event: {e}") from e
        await self.store.insert(event)
        return event

    async def sync(self) -> SyncResponse:
        if self.sync_client is None or self.sync_config is None:
            raise InvalidConfigError("sync", "Sync is not configured")
        return await sync_once(
            self.sync_client,
            self.store,
            self.sync_config.batch_size,
            self._sync_lock,
        )

    async def stats(self) -> EventStats:
        total = await self.store.total_count()
        unsynced = await self.store.unsynced_count()
        return EventStats(
            total_events=total,
            unsynced_events=unsynced,
            synced_events=total - unsynced,
        )

    async def cleanup(self) -> int:
        return await self.store.cleanup_old_events()

    def grant_consent(self) -> None:
        self._privacy_manager().grant_consent()

    def deny_consent(self) -> None:
        self._privacy_manager().deny_consent()

    def opt_out(self) -> None:
        self._privacy_manager().opt_out()

    def _privacy_manager(self) -> PrivacyManager:
        if self.privacy is None:
            raise InvalidConfigError("privacy", "Privacy features are not enabled, pass a PrivacyConfig to create()")
        return self.privacy

    async def shutdown(self) -> None:
        if self._auto_sync is not None:
            if self._auto_sync.should_sync_on_shutdown and self.sync_client is not None:
                try:
                    await self.sync()
                except Exception as e:
                    logger.warning(f"Final sync on shutdown failed: {e}")
            self._auto_sync.shutdown()
            await self._auto_sync.join()
            self._auto_sync = None

        if self.sync_client is not None:
            await self.sync_client.aclose()
        await self.store.close()
        logger.info(f"Telemetry for {self.service.name} shut down")
