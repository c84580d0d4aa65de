"""Snapshot capture: grab one frame from a live stream and archive it.

A frame is pulled with ffmpeg (one JPEG on stdout, about one second into the
stream to skip black start-up frames), a thumbnail is derived with OpenCV and
both are written under the archive's date partition.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Set

import cv2  # Thumbnail resize and JPEG encoding
import numpy as np  # Buffer decoding

from .archive import Archive
from .camera import redact_url
from .config import Config
from .errors import ArtifactExistsError, CaptureError, StorageError

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Paths written by one successful capture."""

    camera_id: str
    timestamp: datetime
    full_path: str
    thumb_path: str


class SnapshotPipeline:
    """Extracts stills from a stream and persists full + thumbnail artifacts."""

    def __init__(
        self,
        archive: Archive,
        ffmpeg_bin: str = "ffmpeg",
        timeout: float = 30.0,
        thumb_width: int = 320,
        thumb_quality: int = 60,
    ) -> None:
        self.archive = archive
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout
        self.thumb_width = thumb_width
        self.thumb_quality = thumb_quality
        self._procs: Set[subprocess.Popen] = set()
        self._procs_lock = threading.Lock()
        self._closed = False

    # Frame extraction
    def grab_frame(self, stream_url: str) -> bytes:
        """Run ffmpeg against the stream and return one JPEG frame.

        Raises:
          CaptureError: If ffmpeg cannot start, fails, times out, is cancelled
            by `close()`, or produces no output.
        """
        if self._closed:
            raise CaptureError("capture pipeline is closed")
        safe_url = redact_url(stream_url)
        command = [
            self.ffmpeg_bin,
            "-hide_banner", "-loglevel", "error",
            "-i", stream_url,
            "-ss", "00:00:01.000",
            "-f", "image2",
            "-frames:v", "1",
            "-",
        ]
        try:
            process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise CaptureError(f"cannot run {self.ffmpeg_bin}: {e}") from e
        with self._procs_lock:
            self._procs.add(process)
        try:
            try:
                stdout, stderr = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                _terminate_process_gracefully(process)
                raise CaptureError(f"frame grab from {safe_url} timed out after {self.timeout:.0f}s")
        finally:
            with self._procs_lock:
                self._procs.discard(process)
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").replace(stream_url, safe_url).strip()[:300]
            if self._closed:
                raise CaptureError("frame grab cancelled")
            raise CaptureError(f"ffmpeg exited with {process.returncode} for {safe_url}: {detail}")
        if not stdout:
            raise CaptureError(f"ffmpeg produced no frame for {safe_url}")
        return stdout

    def make_thumbnail(self, data: bytes) -> bytes:
        """Downscale a JPEG to `thumb_width` (proportional height) at reduced quality.

        Images narrower than the target width keep their size and are only
        re-encoded.
        """
        img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            raise CaptureError("frame is not a decodable image")
        h, w = img.shape[:2]
        if w > self.thumb_width:
            new_h = max(1, int(round(h * self.thumb_width / float(w))))
            img = cv2.resize(img, (self.thumb_width, new_h), interpolation=cv2.INTER_AREA)
        ok, buf = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), int(self.thumb_quality)])
        if not ok:
            raise CaptureError("thumbnail encode failed")
        return buf.tobytes()

    # Full capture
    def capture(self, stream_url: str, camera_id: str, timestamp: datetime) -> CaptureResult:
        """Grab a frame and store it with its thumbnail.

        Args:
          stream_url: Live stream address (may embed credentials).
          camera_id: Archive partition.
          timestamp: Capture time; truncated to whole seconds.

        Returns:
          The written artifact paths.

        Raises:
          ArtifactExistsError: An artifact for this camera and second exists.
          CaptureError: Extraction or thumbnail generation failed.
          StorageError: Directories or files could not be written.
        """
        ts = timestamp.replace(microsecond=0)
        full = self.archive.full_path(camera_id, ts)
        thumb = self.archive.thumb_path(camera_id, ts)
        if os.path.exists(full):
            raise ArtifactExistsError(f"artifact already exists: {full}")

        data = self.grab_frame(stream_url)
        thumb_data = self.make_thumbnail(data)

        try:
            # Exclusive create: a concurrent capture in the same second loses
            _write_file(full, data, "xb")
        except FileExistsError as e:
            raise ArtifactExistsError(f"artifact already exists: {full}") from e
        except OSError as e:
            raise StorageError(f"cannot write {full}: {e}") from e
        try:
            _write_file(thumb, thumb_data, "wb")
        except (OSError, StorageError) as e:
            _discard(full)
            raise StorageError(f"cannot write {thumb}: {e}") from e

        logger.info("Captured %s (%d bytes)", full, len(data))
        return CaptureResult(camera_id=camera_id, timestamp=ts, full_path=full, thumb_path=thumb)

    def close(self) -> None:
        """Refuse new grabs and terminate every running ffmpeg process."""
        self._closed = True
        with self._procs_lock:
            procs = list(self._procs)
        for process in procs:
            _terminate_process_gracefully(process)


def _terminate_process_gracefully(process: subprocess.Popen, timeout: float = 5.0) -> None:
    """Terminate a process: SIGTERM first, then SIGKILL if needed."""
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("ffmpeg did not respond to SIGTERM, sending SIGKILL")
        try:
            process.kill()
            process.wait()
        except OSError:
            pass


def _write_file(path: str, data: bytes, mode: str) -> None:
    """Write `data` to `path`, creating its parent directories.

    A prune pass may remove a still-empty directory between `makedirs` and
    `open`; the directories are recreated and the write retried once.
    """
    for attempt in range(2):
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create {os.path.dirname(path)}: {e}") from e
        try:
            with open(path, mode) as f:
                f.write(data)
            return
        except FileNotFoundError:
            if attempt:
                raise
            logger.warning("Directory for %s vanished before write, retrying", path)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.error("Could not remove partial artifact %s: %s", path, e)


def make_pipeline(archive: Optional[Archive] = None) -> SnapshotPipeline:
    """Build a `SnapshotPipeline` from config."""
    return SnapshotPipeline(
        archive or Archive(Config.ARCHIVE_DIR),
        ffmpeg_bin=Config.FFMPEG_BIN,
        timeout=Config.FFMPEG_TIMEOUT_SEC,
        thumb_width=Config.THUMB_WIDTH,
        thumb_quality=Config.THUMB_QUALITY,
    )
