"""Tests for configuration parsing and validation."""

import pytest

from ptz_watch import config as config_module
from ptz_watch.config import Config, parse_duration
from ptz_watch.errors import ConfigError


@pytest.mark.parametrize(
    "value, seconds",
    [
        ("5m", 300),
        ("10h", 36000),
        ("1d", 86400),
        ("2w", 1209600),
        ("1h30m", 5400),
        ("90s", 90),
        ("45", 45),
        ("1.5", 1.5),
        (" 2H ", 7200),
    ],
)
def test_parse_duration(value, seconds) -> None:
    assert parse_duration(value) == seconds


@pytest.mark.parametrize("value", ["", "abc", "5x", "0", "0m", "5m garbage", "-5m"])
def test_parse_duration_rejects_malformed(value) -> None:
    with pytest.raises(ConfigError):
        parse_duration(value)


def test_env_duration_names_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PTZ_SNAPSHOT_INTERVAL", "every now and then")
    with pytest.raises(ConfigError, match="PTZ_SNAPSHOT_INTERVAL"):
        config_module._env_duration("PTZ_SNAPSHOT_INTERVAL", "5m")


def test_env_int_tolerates_comments(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PTZ_PORT", '"8080 # lan only"')
    assert config_module._env_int("PTZ_PORT", 80) == 8080
    monkeypatch.setenv("PTZ_PORT", "none")
    assert config_module._env_int("PTZ_PORT", 80) == 80


def test_env_dir_is_absolute(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PTZ_ARCHIVE_DIR", "'captures/archive'")
    path = config_module._env_dir("PTZ_ARCHIVE_DIR", "data")
    assert path.endswith("captures/archive")
    assert path.startswith("/")


def _valid(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(Config, "ONVIF_HOST", "10.0.0.5")
    monkeypatch.setattr(Config, "OBSERVATION_PRESET", "1")
    monkeypatch.setattr(Config, "NEUTRAL_PRESET", "2")
    monkeypatch.setattr(Config, "CAMERA_ID", "garden")
    monkeypatch.setattr(Config, "THUMB_QUALITY", 60)
    monkeypatch.setattr(Config, "THUMB_WIDTH", 320)
    monkeypatch.setattr(Config, "PORT", 80)
    monkeypatch.setattr(Config, "SETTLE_DELAY_SEC", 8.0)


def test_validate_accepts_complete_config(monkeypatch: pytest.MonkeyPatch) -> None:
    _valid(monkeypatch)
    Config.validate()


def test_validate_reports_missing_options(monkeypatch: pytest.MonkeyPatch) -> None:
    _valid(monkeypatch)
    monkeypatch.setattr(Config, "ONVIF_HOST", "")
    monkeypatch.setattr(Config, "NEUTRAL_PRESET", "")
    with pytest.raises(ConfigError) as excinfo:
        Config.validate()
    assert "PTZ_ONVIF_HOST" in str(excinfo.value)
    assert "PTZ_NEUTRAL_PRESET" in str(excinfo.value)


def test_validate_rejects_path_like_camera_id(monkeypatch: pytest.MonkeyPatch) -> None:
    _valid(monkeypatch)
    monkeypatch.setattr(Config, "CAMERA_ID", "../etc")
    with pytest.raises(ConfigError, match="PTZ_CAMERA_ID"):
        Config.validate()
