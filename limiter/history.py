"""Bounded log of every limiter attempt.

Feeds the behaviour analyzer, the backoff calculator and stats().  The
deque caps memory at MAX_RECORDS no matter how busy the process is; the
cleanup sweep separately drops anything older than RETENTION_MS.
"""

from collections import Counter, deque
from dataclasses import dataclass, field

MAX_RECORDS = 1000
RETENTION_MS = 3_600_000

ALLOWED = "allowed"
BLOCKED = "blocked"


@dataclass(frozen=True)
class AttemptRecord:
    timestamp: int
    category: str
    caller_id: str
    outcome: str
    reason: str | None = None
    # True for records written by record(), i.e. the call actually ran.
    committed: bool = False
    metadata: dict = field(default_factory=dict, compare=False)

    @property
    def blocked(self) -> bool:
        return self.outcome == BLOCKED


class RequestHistory:

    def __init__(self, max_records: int = MAX_RECORDS):
        self._records: deque[AttemptRecord] = deque(maxlen=max_records)

    def append(self, record: AttemptRecord) -> None:
        self._records.append(record)

    def attempts(self, caller_id: str, since: int) -> list[AttemptRecord]:
        """Check-phase records for *caller_id* newer than *since*, oldest first."""
        return [
            r for r in self._records
            if r.caller_id == caller_id and r.timestamp > since and not r.committed
        ]

    def violations(self, category: str, caller_id: str, since: int) -> int:
        return sum(
            1 for r in self._records
            if r.blocked and r.category == category
            and r.caller_id == caller_id and r.timestamp > since
        )

    def prune(self, now: int) -> int:
        """Drop records older than the retention window.  Returns how many."""
        cutoff = now - RETENTION_MS
        before = len(self._records)
        kept = [r for r in self._records if r.timestamp > cutoff]
        self._records = deque(kept, maxlen=self._records.maxlen)
        return before - len(kept)

    def forget(self, caller_id: str) -> None:
        kept = [r for r in self._records if r.caller_id != caller_id]
        self._records = deque(kept, maxlen=self._records.maxlen)

    def callers(self) -> set[str]:
        return {r.caller_id for r in self._records}

    def summary(self, top: int = 5, recent: int = 10) -> dict:
        checks = [r for r in self._records if not r.committed]
        per_category = Counter(r.category for r in checks)
        return {
            "total_requests": len(checks),
            "blocked_requests": sum(1 for r in checks if r.blocked),
            "top_endpoints": per_category.most_common(top),
            "recent_activity": list(self._records)[-recent:],
        }

    def __len__(self) -> int:
        return len(self._records)
