from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, timezone
from typing import Optional, Any, Dict, List, Iterable
from uuid import UUID, uuid4


SCHEMA_VERSION = "1.0.0"
SDK_VERSION = "0.3.0"
SDK_NAME = "telemetry-kit-python"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceInfo(BaseModel):
    name: str = Field(..., description="Service name, e.g. 'my-cli'.")
    version: str = Field(..., description="Service version, e.g. '1.2.0'.")
    language: str = Field("python", description="Programming language of the service.")
    language_version: Optional[str] = None


class Environment(BaseModel):
    os: str
    os_version: Optional[str] = None
    arch: Optional[str] = None
    ci: Optional[bool] = None
    shell: Optional[str] = None


class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="type", description="command_execution, feature_used, ...")
    category: Optional[str] = None
    data: Any = Field(default_factory=dict, description="Arbitrary JSON payload.")


class Metadata(BaseModel):
    sdk_version: str = f"{SDK_NAME}/{SDK_VERSION}"
    transmission_timestamp: datetime = Field(default_factory=utcnow)
    batch_size: int = 1
    retry_count: int = 0


class Event(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    schema_version: str = SCHEMA_VERSION
    event_id: UUID = Field(default_factory=uuid4, description="Unique identifier of the event (UUID).")
    timestamp: datetime = Field(default_factory=utcnow, description="Creation time (ISO-8601).")
    service: ServiceInfo
    user_id: str = Field(..., description="Anonymous identifier, 'client_<64 hex>'.")
    session_id: Optional[str] = None
    environment: Environment
    event: EventData
    metadata: Metadata = Field(default_factory=Metadata)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class EventBatch(BaseModel):
    events: List[Event] = Field(default_factory=list)

    def size(self) -> int:
        return len(self.events)

    def is_empty(self) -> bool:
        return not self.events

    def to_json(self) -> str:
        """Wire body of a sync request. Signed as-is, never re-encoded."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class BufferedEvent(BaseModel):
    """An event as held in the local buffer, with its sync bookkeeping."""
    event: Event
    created_at: float
    synced_at: Optional[float] = None
    retry_count: int = 0

    @property
    def is_synced(self) -> bool:
        return self.synced_at is not None


def command_event_data(
    command: str,
    subcommand: Optional[str] = None,
    flags: Iterable[str] = (),
    success: Optional[bool] = None,
    duration_ms: Optional[int] = None,
    exit_code: Optional[int] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"command": command}
    if subcommand is not None:
        data["subcommand"] = subcommand
    flags = list(flags)
    if flags:
        data["flags"] = flags
    if success is not None:
        data["success"] = success
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    if exit_code is not None:
        data["exit_code"] = exit_code
    return data


def feature_event_data(
    feature: str,
    method: Optional[str] = None,
    success: Optional[bool] = None,
    **custom: Any,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"feature": feature}
    if method is not None:
        data["method"] = method
    if success is not None:
        data["success"] = success
    data.update(custom)
    return data
