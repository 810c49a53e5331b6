"""Periodic cleanup sweep.

A daemon thread that calls the limiter's cleanup() once per interval.  It
does no work of its own: every sweep goes through the limiter so it takes
the same lock as check() and record().  Tests skip the thread and call
cleanup() directly with a manual clock.
"""

import logging
import threading

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_MS = 60_000


class CleanupScheduler:

    def __init__(self, sweep, interval_ms: int = CLEANUP_INTERVAL_MS):
        self._sweep = sweep
        self.interval_ms = interval_ms
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="ratelimit-cleanup", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_ms / 1000):
            try:
                self._sweep()
            except Exception:
                # Keep sweeping; a failed pass only delays eviction.
                logger.exception("Rate limiter cleanup sweep failed")
