import hashlib
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from telemetry_kit.core.errors import InvalidConfigError, SerializationError
from telemetry_kit.schemas.config import PrivacyConfig
from telemetry_kit.schemas.events import utcnow


DEFAULT_CONSENT_DIR = Path("~/.telemetry-kit")


class ConsentStatus(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    OPTED_OUT = "opted_out"


class ConsentInfo(BaseModel):
    status: ConsentStatus = ConsentStatus.UNKNOWN
    timestamp: datetime = Field(default_factory=utcnow)
    service_name: str = ""


def is_do_not_track_enabled() -> bool:
    value = os.environ.get("DO_NOT_TRACK", "")
    return bool(value) and value != "0" and value.lower() != "false"


def sanitize_path(path: str) -> str:
    """Replace the current user's home directory with '~'."""
    home = str(Path.home())
    if not home or home == os.sep:
        return path
    return path.replace(home, "~")


def sanitize_email(email: str) -> str:
    digest = hashlib.sha256(email.encode("utf-8")).hexdigest()
    return f"email_{digest[:16]}"


class PrivacyManager:
    """Decides whether events may be recorded and scrubs their payloads."""

    def __init__(
        self,
        config: PrivacyConfig,
        service_name: str,
        consent_dir: str | Path | None = None,
    ):
        self.config = config
        self.service_name = service_name
        base_dir = Path(consent_dir) if consent_dir is not None else DEFAULT_CONSENT_DIR
        self.consent_file = base_dir.expanduser() / f"{service_name}-consent.json"

    def should_track(self) -> bool:
        if self.config.respect_do_not_track and is_do_not_track_enabled():
            return False

        if not self.config.consent_required:
            return True

        # unknown consent counts as a refusal
        return self.load_consent().status == ConsentStatus.GRANTED

    def load_consent(self) -> ConsentInfo:
        if not self.consent_file.exists():
            return ConsentInfo()

        try:
            return ConsentInfo.model_validate_json(self.consent_file.read_text())
        except OSError as e:
            raise InvalidConfigError("consent_file", f"Cannot read {self.consent_file}: {e}") from e
        except ValidationError as e:
            raise SerializationError(f"Malformed consent file {self.consent_file}: {e}") from e

    def save_consent(self, status: ConsentStatus) -> ConsentInfo:
        consent = ConsentInfo(status=status, service_name=self.service_name)
        try:
            self.consent_file.parent.mkdir(parents=True, exist_ok=True)
            self.consent_file.write_text(consent.model_dump_json(indent=2))
        except OSError as e:
            raise InvalidConfigError("consent_file", f"Cannot write {self.consent_file}: {e}") from e

        logger.info(f"Telemetry consent for {self.service_name} set to {status.value}")
        return consent

    def grant_consent(self) -> ConsentInfo:
        return self.save_consent(ConsentStatus.GRANTED)

    def deny_consent(self) -> ConsentInfo:
        return self.save_consent(ConsentStatus.DENIED)

    def opt_out(self) -> ConsentInfo:
        return self.save_consent(ConsentStatus.OPTED_OUT)

    def sanitize_data(self, data: Any) -> Any:
        """Return a copy of a JSON-like value with paths and emails scrubbed."""
        if isinstance(data, dict):
            return {key: self.sanitize_data(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.sanitize_data(item) for item in data]
        if isinstance(data, str):
            return self._sanitize_string(data)
        return data

    def _sanitize_string(self, value: str) -> str:
        if self.config.sanitize_paths and ("/" in value or "\\" in value):
            value = sanitize_path(value)
        if self.config.sanitize_emails and "@" in value:
            value = sanitize_email(value)
        return value

