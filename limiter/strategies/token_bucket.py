"""Token bucket — refill whole windows at a time, spend one token per call.

Capacity is max_requests + burst_allowance.  Refill adds a full bucket for
every complete window since the last refill, capped at capacity, and only
moves last_refill when something was actually added.
"""

from dataclasses import dataclass

from limiter.config import TOKEN_BUCKET
from limiter.strategies import Strategy, StrategyResult, remaining_after

MIN_RETRY_MS = 1000


@dataclass
class Bucket:
    tokens: float
    last_refill: int
    window_ms: int


class TokenBucket(Strategy):
    name = TOKEN_BUCKET

    def check(self, key, config, now):
        bucket = self._state.get(key)
        if bucket is None:
            tokens, elapsed = float(config.capacity), 0
        else:
            self._refill(bucket, config, now)
            tokens, elapsed = bucket.tokens, now - bucket.last_refill

        if tokens > 0:
            # Burst tokens exist but the reported budget never exceeds the limit.
            spent = config.max_requests - int(tokens) + 1
            return StrategyResult(
                allowed=True,
                remaining=remaining_after(config.max_requests, spent),
                reset_at=now + config.window_ms,
            )
        retry = max(MIN_RETRY_MS, config.window_ms - elapsed % config.window_ms)
        return StrategyResult(
            allowed=False,
            remaining=0,
            reset_at=now + retry,
            retry_after_ms=retry,
        )

    def consume(self, key, config, now):
        bucket = self._state.get(key)
        if bucket is None:
            bucket = Bucket(
                tokens=float(config.capacity),
                last_refill=now,
                window_ms=config.window_ms,
            )
            self._state[key] = bucket
        else:
            self._refill(bucket, config, now)
        bucket.tokens = max(0.0, bucket.tokens - 1)

    def sweep(self, now):
        # A bucket the next refill would top up is indistinguishable from a new one.
        full = [
            k for k, b in self._state.items()
            if now - b.last_refill >= b.window_ms
        ]
        for key in full:
            del self._state[key]
        return len(full)

    @staticmethod
    def _refill(bucket: Bucket, config, now: int) -> None:
        periods = (now - bucket.last_refill) // config.window_ms
        if periods > 0:
            bucket.tokens = min(config.capacity, bucket.tokens + periods * config.capacity)
            bucket.last_refill = now
