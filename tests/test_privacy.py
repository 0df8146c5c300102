from pathlib import Path

import pytest

from telemetry_kit.schemas.config import PrivacyConfig
from telemetry_kit.services.privacy import (
    ConsentStatus,
    PrivacyManager,
    is_do_not_track_enabled,
    sanitize_email,
    sanitize_path,
)


@pytest.fixture
def manager(tmp_path):
    return PrivacyManager(PrivacyConfig(), "my-cli", consent_dir=tmp_path)


@pytest.fixture
def strict_manager(tmp_path):
    return PrivacyManager(PrivacyConfig.strict(), "my-cli", consent_dir=tmp_path)


@pytest.mark.parametrize("value, expected", [
    ("1", True),
    ("true", True),
    ("yes", True),
    ("0", False),
    ("false", False),
    ("FALSE", False),
    ("", False),
])
def test_do_not_track_values(monkeypatch, value, expected):
    monkeypatch.setenv("DO_NOT_TRACK", value)

    assert is_do_not_track_enabled() is expected


def test_do_not_track_unset():
    assert not is_do_not_track_enabled()


def test_presets():
    assert not PrivacyConfig().consent_required
    assert PrivacyConfig().data_retention_days == 90

    strict = PrivacyConfig.strict()
    assert strict.consent_required
    assert strict.data_retention_days == 30

    minimal = PrivacyConfig.minimal()
    assert minimal.respect_do_not_track
    assert not minimal.sanitize_paths
    assert minimal.data_retention_days == 0


def test_tracks_by_default(manager):
    assert manager.should_track()


def test_do_not_track_blocks_tracking(manager, monkeypatch):
    monkeypatch.setenv("DO_NOT_TRACK", "1")

    assert not manager.should_track()


def test_do_not_track_can_be_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("DO_NOT_TRACK", "1")
    manager = PrivacyManager(PrivacyConfig(respect_do_not_track=False), "my-cli", consent_dir=tmp_path)

    assert manager.should_track()


def test_consent_required(strict_manager):
    assert strict_manager.load_consent().status == ConsentStatus.UNKNOWN
    assert not strict_manager.should_track()

    strict_manager.grant_consent()
    assert strict_manager.should_track()

    strict_manager.deny_consent()
    assert not strict_manager.should_track()

    strict_manager.opt_out()
    assert not strict_manager.should_track()
    assert strict_manager.load_consent().status == ConsentStatus.OPTED_OUT


def test_consent_file_location(strict_manager, tmp_path):
    consent = strict_manager.grant_consent()

    path = tmp_path / "my-cli-consent.json"
    assert path.exists()
    assert '"granted"' in path.read_text()
    assert consent.service_name == "my-cli"


def test_sanitize_path():
    home = str(Path.home())

    assert sanitize_path(f"{home}/projects/app") == "~/projects/app"
    assert sanitize_path("/tmp/some/path") == "/tmp/some/path"


def test_sanitize_email():
    hashed = sanitize_email("user@example.com")

    assert hashed.startswith("email_")
    assert len(hashed) == len("email_") + 16
    assert hashed == sanitize_email("user@example.com")
    assert hashed != sanitize_email("other@example.com")
    assert "user" not in hashed


def test_sanitize_data_walks_nested_values(manager):
    home = str(Path.home())
    data = {
        "file": f"{home}/secret/notes.txt",
        "contact": "user@example.com",
        "nested": {"paths": [f"{home}/a", "plain"], "count": 3},
    }

    sanitized = manager.sanitize_data(data)

    assert sanitized["file"] == "~/secret/notes.txt"
    assert sanitized["contact"].startswith("email_")
    assert sanitized["nested"]["paths"] == ["~/a", "plain"]
    assert sanitized["nested"]["count"] == 3
    assert data["contact"] == "user@example.com"


def test_minimal_config_keeps_data(tmp_path):
    manager = PrivacyManager(PrivacyConfig.minimal(), "my-cli", consent_dir=tmp_path)
    data = {"contact": "user@example.com"}

    assert manager.sanitize_data(data) == data
