"""Cancelable timers used by the session scheduler and the retention pruner.

`RepeatingTimer` fires a callback every `interval` seconds on its own daemon
thread; `OneShotTimer` fires once after a delay. Both stop for good once
`cancel()` is called: a cancelled timer never invokes its callback again.
"""

from __future__ import annotations

import logging
import threading  # Timer threads and cancellation events
from typing import Callable

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Invoke `callback` every `interval` seconds until cancelled.

    Exceptions raised by the callback are logged and the timer keeps running.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        name: str = "repeating-timer",
        run_immediately: bool = False,
    ) -> None:
        """Create the timer (not started).

        Args:
          interval: Seconds between invocations.
          callback: Zero-argument function to call.
          name: Thread name, used in logs.
          run_immediately: Also invoke once right after `start()`.
        """
        self.interval = interval
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        """Stop the timer; safe to call more than once and from the callback."""
        self._cancelled.set()

    def _fire(self) -> None:
        try:
            self.callback()
        except Exception:
            # Never let one failing run kill the timer thread
            logger.exception("Timer %s callback failed", self.name)

    def _run(self) -> None:
        if self.run_immediately and not self._cancelled.is_set():
            self._fire()
        # Event.wait returns True once cancelled, ending the loop
        while not self._cancelled.wait(self.interval):
            self._fire()


class OneShotTimer:
    """Invoke `callback` once after `delay` seconds unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[], None], name: str = "oneshot-timer") -> None:
        self.delay = delay
        self.callback = callback
        self.name = name
        self._timer = threading.Timer(delay, self._fire)
        self._timer.name = name
        self._timer.daemon = True

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()

    def _fire(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception("Timer %s callback failed", self.name)
