"""Flask web application exposing session control and the archive."""

import logging
import os  # For file path operations
from datetime import datetime, time

import flask  # Web server

from .archive import TIMESTAMP_FORMAT, check_camera_id, format_timestamp, parse_timestamp
from .errors import ArtifactExistsError, CaptureError, DeviceError, StorageError, UnknownCameraError
from .service import SessionScheduler  # Scheduler providing session control and captures

logger = logging.getLogger(__name__)


def _iso(ts):
    return ts.isoformat(timespec="seconds") if ts is not None else None


def _error(message: str, status: int, **extra):
    body = {"error": message}
    body.update(extra)
    return flask.jsonify(body), status


def _parse_bound(value: str, default: datetime, end_of_day: bool = False) -> datetime:
    """Parse a range bound: a full timestamp or a bare `YYYY-MM-DD` date.

    A bare date means the start of that day, or its last second when
    `end_of_day` is set.
    """
    if not value:
        return default
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        day = datetime.strptime(value, "%Y-%m-%d").date()
    return datetime.combine(day, time.max if end_of_day else time.min)


def create_app(service: SessionScheduler) -> flask.Flask:
    """Create and configure the Flask application.

    Args:
      service: Running `SessionScheduler` to control sessions and read the archive.

    Returns:
      A Flask app instance with session, capture, archive and live routes.
    """
    app = flask.Flask(__name__)
    archive = service.archive

    def _session_body():
        st = service.status()
        return {
            "active": st.active,
            "started_at": _iso(st.started_at),
            "expires_at": _iso(st.expires_at),
            "captures_total": st.captures_total,
            "capture_failures_total": st.capture_failures_total,
            "last_capture_ts": _iso(st.last_capture_ts),
        }

    @app.route("/health")
    def health():
        return {"status": "ok"}

    @app.route("/api/session")
    def session_state():
        """Return whether a session is active, plus capture counters."""
        return _session_body()

    @app.route("/api/session/start", methods=["POST"])
    def session_start():
        """Start a session (no-op when one is active)."""
        try:
            started = service.start()
        except DeviceError as e:
            return _error(f"camera move failed: {e}", 502, **_session_body())
        body = _session_body()
        body["changed"] = started
        return body

    @app.route("/api/session/stop", methods=["POST"])
    def session_stop():
        """Stop the session (no-op when idle)."""
        try:
            stopped = service.stop()
        except DeviceError as e:
            return _error(f"camera move failed: {e}", 502, **_session_body())
        body = _session_body()
        body["changed"] = stopped
        return body

    @app.route("/api/cameras")
    def cameras():
        """List camera identifiers present in the archive."""
        return {"cameras": archive.list_cameras()}

    @app.route("/api/cameras/<camera_id>/capture", methods=["POST"])
    def capture(camera_id: str):
        """Take an ad-hoc snapshot outside of any session."""
        try:
            result = service.capture_now(camera_id)
        except UnknownCameraError:
            return _error(f"unknown camera: {camera_id}", 404)
        except ArtifactExistsError as e:
            return _error(str(e), 409)
        except (CaptureError, DeviceError) as e:
            logger.warning("Ad-hoc capture failed: %s", e)
            return _error(str(e), 502)
        except StorageError as e:
            logger.error("Ad-hoc capture could not be stored: %s", e)
            return _error(str(e), 500)
        body = {
            "camera_id": result.camera_id,
            "timestamp": format_timestamp(result.timestamp),
            "path": os.path.relpath(result.full_path, archive.root),
            "thumb_path": os.path.relpath(result.thumb_path, archive.root),
        }
        return body, 201

    @app.route("/api/cameras/<camera_id>/captures")
    def captures(camera_id: str):
        """List capture timestamps in `[from, to]` (defaults to today)."""
        today = datetime.now().date()
        try:
            check_camera_id(camera_id)
            start = _parse_bound(flask.request.args.get("from", ""), datetime.combine(today, time.min))
            end = _parse_bound(
                flask.request.args.get("to", ""), datetime.combine(today, time.max), end_of_day=True
            )
        except ValueError as e:
            return _error(str(e), 400)
        if end < start:
            return _error("'to' is before 'from'", 400)
        found = archive.list_captures(camera_id, start, end)
        return {"camera_id": camera_id, "captures": [format_timestamp(ts) for ts in found]}

    def _send_artifact(camera_id: str, stamp: str, thumbnail: bool):
        try:
            ts = parse_timestamp(stamp)
            path = archive.find_artifact(camera_id, ts, thumbnail=thumbnail)
        except ValueError:
            flask.abort(404)
        if path is None:
            flask.abort(404)
        return flask.send_file(path, mimetype="image/jpeg")

    @app.route("/api/cameras/<camera_id>/captures/<stamp>.jpg")
    def artifact(camera_id: str, stamp: str):
        """Serve a full-resolution capture by camera and timestamp."""
        return _send_artifact(camera_id, stamp, thumbnail=False)

    @app.route("/api/cameras/<camera_id>/captures/<stamp>/thumb.jpg")
    def artifact_thumb(camera_id: str, stamp: str):
        """Serve a thumbnail by camera and timestamp."""
        return _send_artifact(camera_id, stamp, thumbnail=True)

    @app.route("/proxy")
    def proxy():
        """Serve a JPEG grabbed from the live stream right now (not archived)."""
        try:
            data = service.grab_live_frame()
        except (CaptureError, DeviceError) as e:
            logger.warning("Live frame failed: %s", e)
            return ("Live frame unavailable", 502)
        return flask.Response(data, mimetype="image/jpeg")

    return app
