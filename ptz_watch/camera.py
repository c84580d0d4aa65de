"""PTZ device backends and the position controller.

Provides a minimal interface to an ONVIF PTZ camera (preset moves and the live
stream profile) and a `PositionController` that serializes moves, performs
one-time lazy initialization and waits for the camera to settle.
"""

import logging
import threading  # Serializes device access
import time  # Settle delay after moves
from dataclasses import dataclass  # Profile representation
from typing import Optional, Tuple  # Type hints for clarity
from urllib.parse import quote, urlsplit, urlunsplit  # Credential embedding

from .config import Config  # Global configuration
from .errors import DeviceError  # Raised on any device failure

logger = logging.getLogger(__name__)

Speed = Tuple[float, float, float]  # (pan, tilt, zoom)


@dataclass
class Profile:
    """Media profile of the device: token plus its live stream URI."""

    token: str
    stream_uri: str


class PtzDevice:
    """Abstract PTZ device interface.

    Subclasses must implement `initialize()`, `get_current_profile()` and
    `goto_preset()`. Implementations raise `DeviceError` on failure.
    """

    def initialize(self) -> None:
        """Connect to the device and discover its services."""
        raise NotImplementedError

    def get_current_profile(self) -> Profile:
        """Return the active media profile (token + stream URI)."""
        raise NotImplementedError

    def goto_preset(self, profile_token: str, preset_token: str, speed: Speed) -> None:
        """Recall a preset pose.

        Args:
          profile_token: Media profile the PTZ configuration belongs to.
          preset_token: Preset identifier to move to.
          speed: `(pan, tilt, zoom)` speed vector.
        """
        raise NotImplementedError


class OnvifPtzDevice(PtzDevice):
    """ONVIF backend built on the `onvif-zeep` client."""

    def __init__(self, host: str, port: int, user: str, password: str) -> None:
        """Create a device handle; no network traffic happens until `initialize()`.

        Args:
          host: Device host or IP.
          port: ONVIF HTTP port.
          user: Control user.
          password: Control password.
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self._camera = None  # ONVIFCamera instance
        self._media = None  # Media service proxy
        self._ptz = None  # PTZ service proxy

    def initialize(self) -> None:
        """Connect and create the media and PTZ service proxies."""
        from onvif import ONVIFCamera  # Imported lazily; WSDL loading is slow

        try:
            self._camera = ONVIFCamera(self.host, self.port, self.user, self.password)
            self._media = self._camera.create_media_service()
            self._ptz = self._camera.create_ptz_service()
        except Exception as e:
            self._camera = self._media = self._ptz = None
            raise DeviceError(f"ONVIF init failed for {self.host}:{self.port}: {e}") from e

    def _require(self):
        if self._media is None or self._ptz is None:
            raise DeviceError("device not initialized")
        return self._media, self._ptz

    def get_current_profile(self) -> Profile:
        """Return the first media profile and its RTSP stream URI."""
        media, _ = self._require()
        try:
            profiles = media.GetProfiles()
            if not profiles:
                raise DeviceError("device reports no media profiles")
            token = profiles[0].token
            req = media.create_type("GetStreamUri")
            req.ProfileToken = token
            req.StreamSetup = {"Stream": "RTP-Unicast", "Transport": {"Protocol": "RTSP"}}
            uri = media.GetStreamUri(req).Uri
        except DeviceError:
            raise
        except Exception as e:
            raise DeviceError(f"profile query failed: {e}") from e
        return Profile(token=str(token), stream_uri=str(uri))

    def goto_preset(self, profile_token: str, preset_token: str, speed: Speed) -> None:
        """Issue a GotoPreset request."""
        _, ptz = self._require()
        pan, tilt, zoom = speed
        try:
            ptz.GotoPreset({
                "ProfileToken": profile_token,
                "PresetToken": preset_token,
                "Speed": {"PanTilt": {"x": pan, "y": tilt}, "Zoom": {"x": zoom}},
            })
        except Exception as e:
            raise DeviceError(f"GotoPreset {preset_token!r} rejected: {e}") from e


def embed_credentials(uri: str, user: str, password: str) -> str:
    """Return `uri` with URL-encoded credentials placed in its netloc.

    Existing credentials in the URI are replaced. Without a user the URI is
    returned unchanged.
    """
    if not user:
        return uri
    parts = urlsplit(uri)
    hostport = parts.netloc.rsplit("@", 1)[-1]
    auth = quote(user, safe="")
    if password:
        auth += ":" + quote(password, safe="")
    return urlunsplit(parts._replace(netloc=f"{auth}@{hostport}"))


def redact_url(uri: str) -> str:
    """Strip credentials from a URL so it can be logged."""
    parts = urlsplit(uri)
    if "@" not in parts.netloc:
        return uri
    hostport = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit(parts._replace(netloc=f"***@{hostport}"))


class PositionController:
    """Moves the camera between the observation and neutral presets.

    Every device call goes through one lock, so concurrent callers never drive
    the camera at the same time. Initialization happens on first use and is
    retried on the next call if it fails.
    """

    def __init__(
        self,
        device: PtzDevice,
        observation_preset: str,
        neutral_preset: str,
        viewer_user: str = "",
        viewer_password: str = "",
        settle_delay: float = 8.0,
        speed: Speed = (1.0, 1.0, 1.0),
    ) -> None:
        self.device = device
        self.observation_preset = observation_preset
        self.neutral_preset = neutral_preset
        self.viewer_user = viewer_user
        self.viewer_password = viewer_password
        self.settle_delay = settle_delay
        self.speed = speed
        self._lock = threading.RLock()
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.device.initialize()
            self._initialized = True
            logger.info("Camera device initialized")

    def _goto(self, preset: str, label: str) -> None:
        with self._lock:
            self._ensure_initialized()
            profile = self.device.get_current_profile()
            logger.info("Moving camera to %s pose (preset %s)", label, preset)
            self.device.goto_preset(profile.token, preset, self.speed)
            if self.settle_delay > 0:
                time.sleep(self.settle_delay)

    def goto_observation_pose(self) -> None:
        """Move to the observation preset and wait for the camera to settle."""
        self._goto(self.observation_preset, "observation")

    def goto_neutral_pose(self) -> None:
        """Move to the neutral (hidden) preset and wait for the camera to settle."""
        self._goto(self.neutral_preset, "neutral")

    def get_live_stream_address(self) -> str:
        """Query the current profile and return its stream URI with viewer credentials.

        The device may rotate session tokens, so the result is never cached.
        """
        with self._lock:
            self._ensure_initialized()
            profile = self.device.get_current_profile()
        return embed_credentials(profile.stream_uri, self.viewer_user, self.viewer_password)


def make_device() -> PtzDevice:
    """Factory to create the ONVIF device backend from config."""
    return OnvifPtzDevice(Config.ONVIF_HOST, Config.ONVIF_PORT, Config.ONVIF_USER, Config.ONVIF_PASSWORD)


def make_controller(device: Optional[PtzDevice] = None) -> PositionController:
    """Build a `PositionController` wired to config presets and credentials.

    Args:
      device: Optional device override; defaults to `make_device()`.
    """
    speed = float(Config.MOVE_SPEED)
    return PositionController(
        device or make_device(),
        observation_preset=Config.OBSERVATION_PRESET,
        neutral_preset=Config.NEUTRAL_PRESET,
        viewer_user=Config.VIEWER_USER,
        viewer_password=Config.VIEWER_PASSWORD,
        settle_delay=Config.SETTLE_DELAY_SEC,
        speed=(speed, speed, speed),
    )
