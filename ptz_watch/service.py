"""Session lifecycle scheduler for the PTZ watch app.

A session moves the camera to its observation preset, captures a snapshot
right away and then every `snapshot_interval`, and ends on request or after
`session_max_duration`, returning the camera to its neutral preset.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from .archive import Archive
from .camera import PositionController, make_controller
from .config import Config
from .errors import CaptureError, DeviceError, StorageError, UnknownCameraError
from .schedule import OneShotTimer, RepeatingTimer
from .snapshot import CaptureResult, SnapshotPipeline, make_pipeline

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """The single active monitoring session and the timers it owns."""
    generation: int
    started_at: datetime
    capture_timer: RepeatingTimer
    expiry_timer: OneShotTimer


@dataclass
class SessionStatus:
    """Observable scheduler state used by the web API."""
    active: bool = False
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    captures_total: int = 0
    capture_failures_total: int = 0
    last_capture_ts: Optional[datetime] = None


class SessionScheduler:
    """Owns the session state machine (Idle <-> Active) and its timers.

    `start()` and `stop()` run under one lock, so concurrent callers can never
    create two sessions or tear one down twice. Timer callbacks carry the
    generation of the session that armed them and do nothing once that
    session is gone.
    """

    def __init__(
        self,
        controller: PositionController,
        pipeline: SnapshotPipeline,
        camera_id: Optional[str] = None,
        snapshot_interval: Optional[float] = None,
        session_max_duration: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = Config
        self.controller = controller
        self.pipeline = pipeline
        self.camera_id = camera_id or self.config.CAMERA_ID
        self.snapshot_interval = snapshot_interval or self.config.SNAPSHOT_INTERVAL_SEC
        self.session_max_duration = session_max_duration or self.config.SESSION_MAX_DURATION_SEC
        self._clock = clock
        self._lock = threading.Lock()
        self._session: Optional[Session] = None
        self._generation = 0
        self._stats_lock = threading.Lock()
        self._captures_total = 0
        self._capture_failures_total = 0
        self._last_capture_ts: Optional[datetime] = None
        self._workers: Set[threading.Thread] = set()

    @property
    def archive(self) -> Archive:
        return self.pipeline.archive

    # Public API
    def is_active(self) -> bool:
        """Return True while a session is running."""
        return self._session is not None

    def status(self) -> SessionStatus:
        """Return a snapshot of the session state and capture counters."""
        session = self._session
        with self._stats_lock:
            st = SessionStatus(
                captures_total=self._captures_total,
                capture_failures_total=self._capture_failures_total,
                last_capture_ts=self._last_capture_ts,
            )
        if session is not None:
            st.active = True
            st.started_at = session.started_at
            st.expires_at = session.started_at + timedelta(seconds=self.session_max_duration)
        return st

    def start(self) -> bool:
        """Start a session unless one is already active.

        Returns:
          True if a session was started, False if one was already running.

        Raises:
          DeviceError: The observation move failed. The session is active
            anyway so it can still be stopped.
        """
        error: Optional[DeviceError] = None
        with self._lock:
            if self._session is not None:
                logger.info("Session %d already active; start ignored", self._session.generation)
                return False
            try:
                self.controller.goto_observation_pose()
            except DeviceError as e:
                logger.error("Observation move failed, starting session anyway: %s", e)
                error = e
            self._generation += 1
            gen = self._generation
            capture_timer = RepeatingTimer(
                self.snapshot_interval, lambda: self._on_tick(gen), name=f"capture-timer-{gen}"
            )
            expiry_timer = OneShotTimer(
                self.session_max_duration, lambda: self._on_expiry(gen), name=f"expiry-timer-{gen}"
            )
            self._session = Session(gen, self._clock(), capture_timer, expiry_timer)
            capture_timer.start()
            expiry_timer.start()
            logger.info(
                "Session %d started (interval=%.0fs, max duration=%.0fs)",
                gen, self.snapshot_interval, self.session_max_duration,
            )
            # First snapshot without waiting a full interval
            self._dispatch_capture(gen)
        if error is not None:
            raise error
        return True

    def stop(self) -> bool:
        """Stop the active session, if any.

        Returns:
          True if a session was stopped, False if none was active.

        Raises:
          DeviceError: The neutral move failed; the session is stopped anyway.
        """
        return self._teardown(None, "stop requested")

    def shutdown(self) -> None:
        """Best-effort teardown at process exit; cancels in-flight grabs."""
        try:
            self.stop()
        except DeviceError as e:
            logger.warning("Camera did not return to neutral during shutdown: %s", e)
        self.pipeline.close()
        self.join_captures(timeout=2.0)

    def capture_now(self, camera_id: str) -> CaptureResult:
        """Take one ad-hoc snapshot, independent of any session.

        Raises:
          UnknownCameraError: `camera_id` is not the camera this process drives.
          DeviceError, CaptureError, StorageError: Propagated from the capture.
        """
        if camera_id != self.camera_id:
            raise UnknownCameraError(camera_id)
        url = self.controller.get_live_stream_address()
        result = self.pipeline.capture(url, camera_id, self._clock())
        self._record_success(result)
        return result

    def grab_live_frame(self) -> bytes:
        """Return one JPEG from the live stream without archiving it."""
        return self.pipeline.grab_frame(self.controller.get_live_stream_address())

    def join_captures(self, timeout: Optional[float] = None) -> None:
        """Wait for capture workers dispatched so far."""
        with self._stats_lock:
            workers = list(self._workers)
        for t in workers:
            t.join(timeout)

    # Internal
    def _teardown(self, generation: Optional[int], reason: str) -> bool:
        error: Optional[DeviceError] = None
        with self._lock:
            session = self._session
            if session is None:
                return False
            if generation is not None and session.generation != generation:
                return False  # Stale timer from an earlier session
            self._session = None
            # Cancel before moving so no tick can fire once teardown begins
            session.capture_timer.cancel()
            session.expiry_timer.cancel()
            logger.info("Session %d ended (%s)", session.generation, reason)
            try:
                self.controller.goto_neutral_pose()
            except DeviceError as e:
                logger.error("Neutral move failed after session %d: %s", session.generation, e)
                error = e
        if error is not None:
            raise error
        return True

    def _on_expiry(self, generation: int) -> None:
        try:
            self._teardown(generation, "max duration reached")
        except DeviceError:
            pass  # Logged by _teardown; the session is already Idle

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            session = self._session
            if session is None or session.generation != generation:
                return
            expires_at = session.started_at + timedelta(seconds=self.session_max_duration)
            if self._clock() >= expires_at:
                # A tick landing on the expiry instant belongs to the teardown
                logger.debug("Session %d tick at expiry skipped", generation)
                return
            self._dispatch_capture(generation)

    def _dispatch_capture(self, generation: int) -> None:
        """Run one scheduled capture on its own thread; never waited on."""
        ts = self._clock()
        t = threading.Thread(
            target=self._capture_worker, args=(ts,), name=f"capture-{generation}", daemon=True
        )
        with self._stats_lock:
            self._workers.add(t)
        t.start()

    def _capture_worker(self, ts: datetime) -> None:
        try:
            # Re-resolved every time: the device may rotate stream tokens
            url = self.controller.get_live_stream_address()
            result = self.pipeline.capture(url, self.camera_id, ts)
        except (DeviceError, CaptureError, StorageError) as e:
            with self._stats_lock:
                self._capture_failures_total += 1
            logger.warning("Scheduled capture at %s failed: %s", ts.isoformat(timespec="seconds"), e)
        except Exception:
            with self._stats_lock:
                self._capture_failures_total += 1
            logger.exception("Unexpected error in scheduled capture")
        else:
            self._record_success(result)
        finally:
            with self._stats_lock:
                self._workers.discard(threading.current_thread())

    def _record_success(self, result: CaptureResult) -> None:
        with self._stats_lock:
            self._captures_total += 1
            self._last_capture_ts = result.timestamp


def make_service() -> SessionScheduler:
    """Build a scheduler wired to the configured camera and archive."""
    return SessionScheduler(make_controller(), make_pipeline())
