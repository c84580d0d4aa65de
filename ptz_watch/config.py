"""Global configuration for the PTZ watch application.

This module exposes configuration constants via the `Config` class. All values
are read from environment variables (prefix `PTZ_`) with sensible defaults for
a single ONVIF camera monitored from a small always-on host.
"""

import os  # Standard library for environment and filesystem helpers
import re  # Robust parsing of numeric envs and duration strings
from typing import List  # Type hints

from .errors import ConfigError  # Raised on malformed or missing settings

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([smhdw])")


def _env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable robustly.

    Accepts values like "150", "150 # comment" or "\"150\"" and returns the
    first integer found. Falls back to default if parsing fails.
    """
    val = os.getenv(name)
    if val is None:
        return default
    s = str(val).strip().strip('"').strip("'")
    m = re.search(r"-?\d+", s)
    if not m:
        return default
    return int(m.group(0))


def _env_float(name: str, default: float) -> float:
    """Parse a float from an environment variable, falling back to default."""
    val = os.getenv(name)
    if val is None:
        return default
    s = str(val).strip().strip('"').strip("'")
    m = re.search(r"-?\d+(?:\.\d+)?", s)
    if not m:
        return default
    return float(m.group(0))


def _env_str(name: str, default: str = "") -> str:
    """Read a string environment variable with surrounding quotes removed."""
    return str(os.getenv(name, default)).strip().strip('"').strip("'")


def _env_dir(name: str, default: str) -> str:
    """Normalize a directory setting: strip quotes, expand ~ and $VARS, make absolute."""
    raw = _env_str(name, default)
    raw = os.path.expanduser(os.path.expandvars(raw))
    return raw if os.path.isabs(raw) else os.path.abspath(raw)


def parse_duration(value: str) -> float:
    """Parse a human duration into seconds.

    Accepts bare seconds ("300", "1.5") or one or more `<n><unit>` parts where
    unit is one of s, m, h, d, w (e.g. "5m", "1h30m", "2w").

    Args:
      value: Duration string.

    Returns:
      The duration in seconds (always > 0).

    Raises:
      ConfigError: If the string is empty, malformed or not positive.
    """
    s = str(value or "").strip().lower()
    if not s:
        raise ConfigError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", s):
        seconds = float(s)
    else:
        parts = _DURATION_PART.findall(s)
        # Every character must belong to a recognized part
        if not parts or _DURATION_PART.sub("", s).strip():
            raise ConfigError(f"malformed duration: {value!r}")
        seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    if seconds <= 0:
        raise ConfigError(f"duration must be positive: {value!r}")
    return seconds


def _env_duration(name: str, default: str) -> float:
    """Read a duration environment variable, naming the variable on failure."""
    raw = _env_str(name, default)
    try:
        return parse_duration(raw)
    except ConfigError as e:
        raise ConfigError(f"{name}: {e}") from e


class Config:
    """Application configuration sourced from environment variables.

    This class provides class attributes so other modules can import settings as
    constants (e.g., `from ptz_watch.config import Config`). To override a
    setting, define the corresponding environment variable before launching the
    application. Malformed durations raise `ConfigError` when this module loads.
    """
    # Camera identity and ONVIF connection
    CAMERA_ID = _env_str("PTZ_CAMERA_ID", "ptz")  # Archive partition name for the camera
    ONVIF_HOST = _env_str("PTZ_ONVIF_HOST")  # Device host or IP (required)
    ONVIF_PORT = _env_int("PTZ_ONVIF_PORT", 80)  # Device ONVIF HTTP port
    ONVIF_USER = _env_str("PTZ_ONVIF_USER")  # Control credentials
    ONVIF_PASSWORD = _env_str("PTZ_ONVIF_PASSWORD")
    # Credentials embedded into the live stream address; default to control creds
    VIEWER_USER = _env_str("PTZ_VIEWER_USER", ONVIF_USER)
    VIEWER_PASSWORD = _env_str("PTZ_VIEWER_PASSWORD", ONVIF_PASSWORD)

    # Presets and movement
    OBSERVATION_PRESET = _env_str("PTZ_OBSERVATION_PRESET")  # Preset token used while watching
    NEUTRAL_PRESET = _env_str("PTZ_NEUTRAL_PRESET")  # Preset token used when idle (hidden pose)
    MOVE_SPEED = _env_float("PTZ_MOVE_SPEED", 1.0)  # Pan/tilt/zoom speed for preset moves
    SETTLE_DELAY_SEC = _env_float("PTZ_SETTLE_DELAY_SEC", 8.0)  # Wait after each move

    # Session timing
    SNAPSHOT_INTERVAL_SEC = _env_duration("PTZ_SNAPSHOT_INTERVAL", "5m")
    SESSION_MAX_DURATION_SEC = _env_duration("PTZ_SESSION_MAX_DURATION", "10h")

    # Retention
    PRUNE_INTERVAL_SEC = _env_duration("PTZ_PRUNE_INTERVAL", "1d")
    PRUNE_MAX_AGE_SEC = _env_duration("PTZ_PRUNE_MAX_AGE", "2w")

    # Archive and capture
    ARCHIVE_DIR = _env_dir("PTZ_ARCHIVE_DIR", os.path.join("data", "archive"))
    THUMB_WIDTH = _env_int("PTZ_THUMB_WIDTH", 320)  # Thumbnail width in pixels
    THUMB_QUALITY = _env_int("PTZ_THUMB_QUALITY", 60)  # Thumbnail JPEG quality (1..100)
    FFMPEG_BIN = _env_str("PTZ_FFMPEG_BIN", "ffmpeg")  # ffmpeg executable
    FFMPEG_TIMEOUT_SEC = _env_float("PTZ_FFMPEG_TIMEOUT_SEC", 30.0)  # Max time for one grab

    # Web / process
    HOST = _env_str("PTZ_HOST", "0.0.0.0")  # Flask bind host
    PORT = _env_int("PTZ_PORT", 80)  # Flask bind port
    DEBUG = os.getenv("PTZ_DEBUG", "0") == "1"  # Flask debug switch
    LOG_LEVEL = _env_str("PTZ_LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> None:
        """Check required options before anything is scheduled.

        Raises:
          ConfigError: Listing every missing or out-of-range option.
        """
        problems: List[str] = []
        required = {
            "PTZ_ONVIF_HOST": cls.ONVIF_HOST,
            "PTZ_OBSERVATION_PRESET": cls.OBSERVATION_PRESET,
            "PTZ_NEUTRAL_PRESET": cls.NEUTRAL_PRESET,
            "PTZ_CAMERA_ID": cls.CAMERA_ID,
        }
        for name, value in required.items():
            if not value:
                problems.append(f"{name} is required")
        if "/" in cls.CAMERA_ID or cls.CAMERA_ID.startswith("."):
            problems.append("PTZ_CAMERA_ID must be a plain directory name")
        if not 1 <= cls.THUMB_QUALITY <= 100:
            problems.append("PTZ_THUMB_QUALITY must be within 1..100")
        if cls.THUMB_WIDTH <= 0:
            problems.append("PTZ_THUMB_WIDTH must be positive")
        if not 0 < cls.PORT < 65536:
            problems.append("PTZ_PORT must be a valid TCP port")
        if cls.SETTLE_DELAY_SEC < 0:
            problems.append("PTZ_SETTLE_DELAY_SEC must not be negative")
        if problems:
            raise ConfigError("; ".join(problems))
