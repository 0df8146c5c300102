from pydantic import BaseModel, Field

from telemetry_kit.core.errors import InvalidConfigError


DEFAULT_ENDPOINT = "https://api.telemetry-kit.dev"

MAX_BATCH_SIZE = 1000
DEFAULT_BATCH_SIZE = 100


class SyncConfig(BaseModel):
    """Credentials and tuning for pushing buffered events to an ingestion endpoint."""
    endpoint: str = DEFAULT_ENDPOINT
    org_id: str
    app_id: str
    token: str
    secret: str = Field(..., repr=False)
    batch_size: int = DEFAULT_BATCH_SIZE
    max_retries: int = 5
    base_delay_ms: int = 1000
    respect_dnt: bool = True
    timeout_secs: float = 30.0

    def ingestion_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/v1/ingest/{self.org_id}/{self.app_id}"

    def validate_config(self) -> "SyncConfig":
        if not self.org_id:
            raise InvalidConfigError("org_id", "Organization ID cannot be empty")
        if not self.app_id:
            raise InvalidConfigError("app_id", "Application ID cannot be empty")
        if not self.token:
            raise InvalidConfigError("token", "Token cannot be empty")
        if not self.secret:
            raise InvalidConfigError("secret", "Secret cannot be empty")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise InvalidConfigError(
                "batch_size",
                f"Must be between 1 and {MAX_BATCH_SIZE} (got {self.batch_size})",
            )
        if self.max_retries < 0:
            raise InvalidConfigError("max_retries", "Cannot be negative")
        return self


class AutoSyncConfig(BaseModel):
    interval: float = 60
    sync_on_shutdown: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE


class PrivacyConfig(BaseModel):
    consent_required: bool = False
    respect_do_not_track: bool = True
    sanitize_paths: bool = True
    sanitize_emails: bool = True
    data_retention_days: int = 90 # 0 keeps data forever

    @classmethod
    def strict(cls) -> "PrivacyConfig":
        return cls(consent_required=True, data_retention_days=30)

    @classmethod
    def minimal(cls) -> "PrivacyConfig":
        return cls(
            sanitize_paths=False,
            sanitize_emails=False,
            data_retention_days=0,
        )
