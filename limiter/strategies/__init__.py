# Limiting strategies as small stateful classes, one per file.
#
# Each strategy owns the per-key state for its algorithm and nothing else.
# The facade picks one per category from the limits table, checks before a
# call and consumes after it, so check() must never spend budget.

from dataclasses import dataclass

from limiter.config import CallerKey, LimitConfig


@dataclass
class StrategyResult:
    allowed: bool
    remaining: int
    reset_at: int
    retry_after_ms: int | None = None


def remaining_after(limit: int, used: int) -> int:
    """Budget left once *used* requests are spent, clamped to [0, limit]."""
    return max(0, min(limit, limit - used))


class Strategy:
    """Base strategy. Subclass and implement check(), consume() and sweep()."""

    name: str

    def __init__(self):
        self._state: dict[CallerKey, object] = {}

    def check(self, key: CallerKey, config: LimitConfig, now: int) -> StrategyResult:
        """Would a request for *key* be allowed right now?  Read-only for budget."""
        raise NotImplementedError

    def consume(self, key: CallerKey, config: LimitConfig, now: int) -> None:
        """Spend one request for *key*."""
        raise NotImplementedError

    def sweep(self, now: int) -> int:
        """Drop expired state.  Returns the number of keys removed."""
        raise NotImplementedError

    def forget(self, caller_id: str) -> int:
        """Drop every key belonging to *caller_id*, across categories."""
        doomed = [k for k in self._state if k.caller_id == caller_id]
        for key in doomed:
            del self._state[key]
        return len(doomed)

    def __contains__(self, key: CallerKey) -> bool:
        return key in self._state

    def __len__(self) -> int:
        return len(self._state)


from limiter.strategies.fixed_window import FixedWindow
from limiter.strategies.sliding_window import SlidingWindowLog
from limiter.strategies.token_bucket import TokenBucket

ALL_STRATEGIES = [FixedWindow, SlidingWindowLog, TokenBucket]
