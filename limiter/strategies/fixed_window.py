"""Fixed window — a counter that resets at aligned window boundaries.

Cheapest of the three.  Allows up to 2x the limit across a boundary, which
is acceptable for status endpoints and the expensive timestamp calls where
the window is long.
"""

from dataclasses import dataclass

from limiter.config import FIXED_WINDOW
from limiter.strategies import Strategy, StrategyResult, remaining_after


@dataclass
class WindowCounter:
    count: int
    reset_at: int


class FixedWindow(Strategy):
    name = FIXED_WINDOW

    def check(self, key, config, now):
        counter = self._state.get(key)
        if counter is None:
            count, reset_at = 0, now + config.window_ms
        else:
            self._roll(counter, config.window_ms, now)
            count, reset_at = counter.count, counter.reset_at

        if count < config.max_requests:
            return StrategyResult(
                allowed=True,
                remaining=remaining_after(config.max_requests, count + 1),
                reset_at=reset_at,
            )
        return StrategyResult(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            retry_after_ms=reset_at - now,
        )

    def consume(self, key, config, now):
        counter = self._state.get(key)
        if counter is None:
            counter = WindowCounter(count=0, reset_at=now + config.window_ms)
            self._state[key] = counter
        else:
            self._roll(counter, config.window_ms, now)
        counter.count += 1

    def sweep(self, now):
        expired = [k for k, c in self._state.items() if c.reset_at <= now]
        for key in expired:
            del self._state[key]
        return len(expired)

    @staticmethod
    def _roll(counter: WindowCounter, window_ms: int, now: int) -> None:
        # A request exactly at reset_at already belongs to the next window.
        # Boundaries advance in whole windows so they never drift.
        if now >= counter.reset_at:
            skipped = (now - counter.reset_at) // window_ms + 1
            counter.reset_at += skipped * window_ms
            counter.count = 0
