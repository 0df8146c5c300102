from typing import Any


class TelemetryError(Exception):
    """Base class for every error raised by the telemetry SDK."""

    @property
    def retryable(self) -> bool:
        return False


class DatabaseError(TelemetryError):
    """Local storage failed (I/O, corruption, lock contention)."""


class HttpError(TelemetryError):
    """Transport-level failure talking to the ingestion endpoint."""

    @property
    def retryable(self) -> bool:
        return True


class SerializationError(TelemetryError):
    pass


class InvalidConfigError(TelemetryError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid configuration for '{field}': {message}")


class RateLimitExceededError(TelemetryError):
    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after} seconds")

    @property
    def retryable(self) -> bool:
        return True


class ServerError(TelemetryError):
    def __init__(self, status: int, message: str, errors: list[Any] | None = None):
        self.status = status
        self.message = message
        # per-event rejections, present when the server rejected the whole batch
        self.errors = errors or []
        super().__init__(f"Server error: {status} - {message}")

    @property
    def retryable(self) -> bool:
        return self.status >= 500


class AuthError(ServerError):
    """The server refused the token, the signature or its scope (401/403)."""


class MaxRetriesExceededError(TelemetryError):
    def __init__(self, last_error: TelemetryError):
        self.last_error = last_error
        super().__init__(f"Maximum retries exceeded, last error: {last_error}")


class InvalidSchemaError(TelemetryError):
    """An event could not be built from the tracked data."""


class MachineIdError(TelemetryError):
    pass
