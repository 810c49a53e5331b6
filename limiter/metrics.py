"""Prometheus metrics for limiter decisions.

Each Counter/Histogram/Gauge below auto-registers itself in the global
REGISTRY on construction.  Whoever owns the process decides whether to
serve them (limiter.main does, via start_http_server).
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------
decisions_total = Counter(
    "rl_decisions_total",
    "Limiter check decisions",
    ["category", "outcome", "reason"],
)
recorded_total = Counter(
    "rl_recorded_requests_total",
    "Requests committed via record()",
    ["category"],
)
check_latency = Histogram(
    "rl_check_latency_seconds",
    "Time spent inside RateLimiter.check",
    buckets=[0.00001, 0.00005, 0.0001, 0.0005, 0.001, 0.005, 0.01],
)

# ---------------------------------------------------------------------------
# Penalties
# ---------------------------------------------------------------------------
suspicious_total = Counter(
    "rl_suspicious_findings_total",
    "Behaviour analyzer findings",
    ["rule_id"],
)
sessions_blocked_total = Counter(
    "rl_sessions_blocked_total",
    "Callers moved onto the blocklist",
)
blocked_sessions = Gauge(
    "rl_blocked_sessions",
    "Callers currently blocked",
)

# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------
tracked_keys = Gauge(
    "rl_tracked_keys",
    "Strategy keys currently held in memory",
    ["strategy"],
)
history_records = Gauge(
    "rl_history_records",
    "Attempt records currently held in memory",
)
evicted_total = Counter(
    "rl_cleanup_evicted_total",
    "Entries removed by the cleanup sweep",
    ["kind"],
)
