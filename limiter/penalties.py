"""Progressive backoff and per-caller penalties.

Backoff is per (category, caller): it grows with that pair's own recent
violations.  Penalties are per caller: a caller flagged for abuse on any
category is warned, then blocked application-wide.

Caller lifecycle:

    clean -> warned(1) -> warned(2)/blocked -> [block expires] -> scarred

Warnings only go down through an admin reset or when the caller has been
idle long enough for cleanup to forget them.  A scarred caller that is
flagged again is blocked on the spot.
"""

from dataclasses import dataclass

from limiter.config import LimitConfig

VIOLATION_LOOKBACK_MS = 3_600_000
WARNINGS_BEFORE_BLOCK = 2
BLOCK_DURATION_MS = 3_600_000


def backoff_ms(config: LimitConfig, violations: int) -> int:
    """Escalated wait after *violations* recent denials; 0 if not configured."""
    if not config.backoff_multiplier:
        return 0
    delay = config.window_ms * config.backoff_multiplier ** violations
    return int(min(delay, config.backoff_cap_ms))


@dataclass(frozen=True)
class Escalation:
    warnings: int
    blocked_until: int | None

    @property
    def blocked(self) -> bool:
        return self.blocked_until is not None


class PenaltyTracker:

    def __init__(self, block_duration_ms: int = BLOCK_DURATION_MS,
                 warnings_before_block: int = WARNINGS_BEFORE_BLOCK):
        self.block_duration_ms = block_duration_ms
        self.warnings_before_block = warnings_before_block
        self._warnings: dict[str, int] = {}
        self._blocked_until: dict[str, int] = {}

    def escalate(self, caller_id: str, now: int) -> Escalation:
        warnings = self._warnings.get(caller_id, 0) + 1
        self._warnings[caller_id] = warnings
        if warnings >= self.warnings_before_block:
            until = now + self.block_duration_ms
            self._blocked_until[caller_id] = until
            return Escalation(warnings=warnings, blocked_until=until)
        return Escalation(warnings=warnings, blocked_until=None)

    def blocked_until(self, caller_id: str, now: int) -> int | None:
        """Block expiry for *caller_id* if still blocked; expired blocks are dropped."""
        until = self._blocked_until.get(caller_id)
        if until is None:
            return None
        if now >= until:
            del self._blocked_until[caller_id]
            return None
        return until

    def warnings(self, caller_id: str) -> int:
        return self._warnings.get(caller_id, 0)

    def blocked_count(self, now: int) -> int:
        return sum(1 for until in self._blocked_until.values() if until > now)

    def forget_warnings(self, keep: set[str]) -> int:
        """Drop warnings for callers not in *keep*.  The blocklist is untouched."""
        stale = [c for c in self._warnings if c not in keep]
        for caller_id in stale:
            del self._warnings[caller_id]
        return len(stale)

    def reset(self, caller_id: str) -> None:
        self._warnings.pop(caller_id, None)
        self._blocked_until.pop(caller_id, None)
