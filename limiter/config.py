"""Per-category limit configuration and the composite caller key.

The table is compiled in and loaded once.  limiter.loader can replace it
with a YAML file when the limits need to live outside the code.
"""

import re
from dataclasses import dataclass
from typing import NamedTuple

FIXED_WINDOW = "fixed_window"
SLIDING_WINDOW = "sliding_window"
TOKEN_BUCKET = "token_bucket"
STRATEGY_NAMES = (FIXED_WINDOW, SLIDING_WINDOW, TOKEN_BUCKET)

ANONYMOUS = "anonymous"
DEFAULT_CATEGORY = "transaction-lookup"

# Applied when a backoff multiplier is configured without a cap.
DEFAULT_MAX_BACKOFF_MS = 300_000


@dataclass(frozen=True)
class LimitConfig:
    max_requests: int
    window_ms: int
    strategy: str
    burst_allowance: int = 0
    backoff_multiplier: float | None = None
    max_backoff_ms: int | None = None
    allow_patterns: tuple[re.Pattern, ...] = ()
    deny_patterns: tuple[re.Pattern, ...] = ()

    @property
    def capacity(self) -> int:
        """Token-bucket capacity.  Burst only widens the bucket."""
        return self.max_requests + self.burst_allowance

    @property
    def backoff_cap_ms(self) -> int:
        if self.max_backoff_ms is None:
            return DEFAULT_MAX_BACKOFF_MS
        return self.max_backoff_ms


class CallerKey(NamedTuple):
    """Partition key for strategy state: one entry per (category, caller)."""

    category: str
    caller_id: str


DEFAULT_LIMITS: dict[str, LimitConfig] = {
    "transaction-lookup": LimitConfig(
        max_requests=10,
        window_ms=60_000,
        strategy=SLIDING_WINDOW,
        burst_allowance=3,
        backoff_multiplier=2,
        max_backoff_ms=300_000,
    ),
    # Addresses are more privacy-sensitive: smaller budget, steeper backoff.
    "address-explorer": LimitConfig(
        max_requests=5,
        window_ms=60_000,
        strategy=SLIDING_WINDOW,
        burst_allowance=2,
        backoff_multiplier=3,
        max_backoff_ms=600_000,
        deny_patterns=(re.compile(r"^(1{10,}|3{10,})"),),
    ),
    "fee-calculator": LimitConfig(
        max_requests=30,
        window_ms=60_000,
        strategy=TOKEN_BUCKET,
        burst_allowance=10,
    ),
    "network-status": LimitConfig(
        max_requests=20,
        window_ms=60_000,
        strategy=FIXED_WINDOW,
        burst_allowance=5,
    ),
    "document-timestamp": LimitConfig(
        max_requests=3,
        window_ms=300_000,
        strategy=FIXED_WINDOW,
        burst_allowance=1,
        backoff_multiplier=5,
        max_backoff_ms=1_800_000,
    ),
}


def resolve(limits: dict[str, LimitConfig], category: str) -> LimitConfig:
    """Look up a category's limits, falling back to the default category.

    Unknown categories are not an error: state stays keyed under the name
    the caller used, it is just limited like the default.
    """
    config = limits.get(category)
    if config is None:
        config = limits.get(DEFAULT_CATEGORY, DEFAULT_LIMITS[DEFAULT_CATEGORY])
    return config
