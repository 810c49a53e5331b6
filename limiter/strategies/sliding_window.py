"""Sliding-window log of request timestamps per key.

Deque-based: O(1) append, amortized O(1) eviction.  Timestamps are pruned
lazily on check and consume, so idle keys cost nothing until the cleanup
sweep drops them.
"""

from collections import deque

from limiter.config import SLIDING_WINDOW
from limiter.strategies import Strategy, StrategyResult, remaining_after

# Shortest retry hint ever returned on a denial.
MIN_RETRY_MS = 1000

# Cleanup keeps an hour of timestamps regardless of the configured window.
RETENTION_MS = 3_600_000


class TimestampLog:
    __slots__ = ("_buf",)

    def __init__(self):
        self._buf: deque[int] = deque()

    def add(self, timestamp: int) -> None:
        self._buf.append(timestamp)

    def evict(self, cutoff: int) -> int:
        """Drop timestamps at or before *cutoff*.  Returns how many were dropped."""
        dropped = 0
        while self._buf and self._buf[0] <= cutoff:
            self._buf.popleft()
            dropped += 1
        return dropped

    def oldest(self) -> int | None:
        return self._buf[0] if self._buf else None

    def __len__(self) -> int:
        return len(self._buf)


class SlidingWindowLog(Strategy):
    name = SLIDING_WINDOW

    def check(self, key, config, now):
        log = self._state.get(key)
        if log is not None:
            log.evict(now - config.window_ms)
        count = len(log) if log is not None else 0
        oldest = log.oldest() if log is not None else None
        reset_at = oldest + config.window_ms if oldest is not None else now + config.window_ms

        if count < config.max_requests:
            return StrategyResult(
                allowed=True,
                remaining=remaining_after(config.max_requests, count + 1),
                reset_at=reset_at,
            )
        # Relative to the oldest retained timestamp; this can under-estimate
        # the wait when several requests sit near the window edge.
        return StrategyResult(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            retry_after_ms=max(MIN_RETRY_MS, reset_at - now),
        )

    def consume(self, key, config, now):
        log = self._state.get(key)
        if log is None:
            log = TimestampLog()
            self._state[key] = log
        log.evict(now - config.window_ms)
        log.add(now)

    def sweep(self, now):
        cutoff = now - RETENTION_MS
        emptied = []
        for key, log in self._state.items():
            log.evict(cutoff)
            if not log:
                emptied.append(key)
        for key in emptied:
            del self._state[key]
        return len(emptied)
