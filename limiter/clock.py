"""Millisecond time sources.

Every window, refill and backoff in the limiter is computed from a single
clock so tests can drive time explicitly instead of sleeping.
"""

import time


class SystemClock:
    """Wall-clock time in integer milliseconds."""

    def now(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = 0):
        self._now = start_ms

    def now(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += ms
        return self._now

    def set(self, ms: int) -> None:
        self._now = ms
