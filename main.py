"""Application entrypoint: starts the scheduler, the pruner and the Flask web app."""

import logging
import signal
import sys

from ptz_watch.errors import ConfigError


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the `ptz_watch` logger (idempotent)."""
    logger = logging.getLogger("ptz_watch")
    logger.setLevel(getattr(logging, level, logging.INFO))
    # Keep werkzeug's per-request lines out of the service log
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[ptzwatch] %(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def main() -> int:
    """Validate config, start background work and run the Flask server."""
    configure_logging()
    try:
        # Malformed durations surface here, when the config module loads
        from ptz_watch.config import Config
        Config.validate()
    except ConfigError as e:
        logging.getLogger("ptz_watch").error("Invalid configuration: %s", e)
        return 2
    configure_logging(Config.LOG_LEVEL)

    from ptz_watch.pruner import make_pruner
    from ptz_watch.service import make_service
    from ptz_watch.web import create_app

    service = make_service()  # Session scheduler bound to the configured camera
    pruner = make_pruner(service.archive)  # Independent retention sweep
    pruner.start()  # First pass runs immediately

    def _shutdown(signum, frame):
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, _shutdown)
    app = create_app(service)  # Build Flask app bound to the scheduler
    try:
        # Use Flask's built-in server; suitable for a LAN appliance
        app.run(host=Config.HOST, port=Config.PORT, debug=Config.DEBUG, threaded=True, use_reloader=False)
    finally:
        pruner.stop()
        service.shutdown()  # Return the camera to neutral if a session is active
    return 0


if __name__ == "__main__":
    sys.exit(main())
