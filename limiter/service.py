"""Rate limiter facade — the only entry point calling services use.

Composes, per check: blocklist → payload patterns → behaviour analysis →
strategy → backoff.  Checking never spends budget; record() does, once the
outbound call has actually gone out.

State: strategy dicts keyed by CallerKey, one bounded history, one penalty
tracker keyed by caller id.  All of it lives behind a single lock and in
this process only, so running several instances of the calling service
divides the effective limits between them.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import NamedTuple

from limiter import metrics
from limiter.analyzer import ANALYSIS_WINDOW_MS, BehaviorAnalyzer
from limiter.cleanup import CLEANUP_INTERVAL_MS, CleanupScheduler
from limiter.clock import SystemClock
from limiter.config import ANONYMOUS, DEFAULT_LIMITS, CallerKey, LimitConfig, resolve
from limiter.history import ALLOWED, BLOCKED, AttemptRecord, RequestHistory
from limiter.patterns import is_denied
from limiter.penalties import (
    VIOLATION_LOOKBACK_MS, Escalation, PenaltyTracker, backoff_ms,
)
from limiter.strategies import ALL_STRATEGIES, StrategyResult

logger = logging.getLogger(__name__)

REASON_BLOCKED = "blocked"
REASON_SUSPICIOUS = "suspicious_pattern"
REASON_DENIED_PATTERN = "denied_pattern"
REASON_RATE_LIMITED = "rate_limited"

SUSPICIOUS_TIMEOUT_MS = 600_000
BLOCKED_MESSAGE = "Session blocked due to suspicious activity"


@dataclass
class Decision:
    allowed: bool
    remaining_requests: int
    reset_time: int
    retry_after_ms: int | None = None
    reason: str | None = None
    warning_message: str | None = None


class EndpointCount(NamedTuple):
    category: str
    count: int


@dataclass
class Stats:
    total_requests: int
    blocked_requests: int
    blocked_session_count: int
    top_endpoints: list[EndpointCount] = field(default_factory=list)
    recent_activity: list[AttemptRecord] = field(default_factory=list)


def _payload_shape(payload) -> dict:
    """Field names and value types only; addresses never land in history."""
    if not isinstance(payload, dict):
        return {}
    return {str(k): type(v).__name__ for k, v in payload.items()}


class RateLimiter:
    """Adaptive client-side limiter for outbound data-provider calls.

    Construct one per process at the composition root and pass it to the
    services that call out.  Cleanup starts with the limiter; call close()
    (or use it as a context manager) to stop it.
    """

    def __init__(
        self,
        limits: dict[str, LimitConfig] | None = None,
        clock=None,
        analyzer: BehaviorAnalyzer | None = None,
        penalties: PenaltyTracker | None = None,
        cleanup_interval_ms: int = CLEANUP_INTERVAL_MS,
        start_cleanup: bool = True,
    ):
        self.limits = dict(limits or DEFAULT_LIMITS)
        self.clock = clock or SystemClock()
        self._analyzer = analyzer or BehaviorAnalyzer()
        self._penalties = penalties or PenaltyTracker()
        self._history = RequestHistory()
        self._strategies = {cls.name: cls() for cls in ALL_STRATEGIES}
        self._lock = threading.RLock()
        self._scheduler = CleanupScheduler(self.cleanup, cleanup_interval_ms)
        if start_cleanup:
            self._scheduler.start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._scheduler.stop()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # Check / record
    # ------------------------------------------------------------------

    def check(self, category: str, caller_id: str = ANONYMOUS,
              payload=None) -> Decision:
        """Decide whether *caller_id* may call *category* now.  Never spends budget."""
        caller_id = caller_id or ANONYMOUS
        started = time.perf_counter()
        with self._lock:
            decision = self._check(category, caller_id, payload)
        metrics.check_latency.observe(time.perf_counter() - started)
        metrics.decisions_total.labels(
            category=self._label(category),
            outcome=ALLOWED if decision.allowed else BLOCKED,
            reason=decision.reason or "ok",
        ).inc()
        return decision

    def record(self, category: str, caller_id: str = ANONYMOUS) -> None:
        """Spend budget for a call that was actually made."""
        caller_id = caller_id or ANONYMOUS
        with self._lock:
            now = self.clock.now()
            config = resolve(self.limits, category)
            key = CallerKey(category, caller_id)
            self._strategies[config.strategy].consume(key, config, now)
            self._history.append(AttemptRecord(
                timestamp=now, category=category, caller_id=caller_id,
                outcome=ALLOWED, committed=True,
            ))
        metrics.recorded_total.labels(category=self._label(category)).inc()

    def usage(self, category: str, caller_id: str = ANONYMOUS) -> StrategyResult:
        """Raw strategy view for one key, without analysis or history."""
        with self._lock:
            now = self.clock.now()
            config = resolve(self.limits, category)
            key = CallerKey(category, caller_id or ANONYMOUS)
            return self._strategies[config.strategy].check(key, config, now)

    def _check(self, category, caller_id, payload) -> Decision:
        now = self.clock.now()
        config = resolve(self.limits, category)
        key = CallerKey(category, caller_id)

        blocked_until = self._penalties.blocked_until(caller_id, now)
        if blocked_until is not None:
            self._log(key, now, BLOCKED, REASON_BLOCKED, payload)
            return Decision(
                allowed=False,
                remaining_requests=0,
                reset_time=blocked_until,
                retry_after_ms=blocked_until - now,
                reason=REASON_BLOCKED,
                warning_message=BLOCKED_MESSAGE,
            )

        if is_denied(config, payload):
            self._log(key, now, BLOCKED, REASON_DENIED_PATTERN, payload)
            return Decision(
                allowed=False,
                remaining_requests=0,
                reset_time=now + config.window_ms,
                retry_after_ms=config.window_ms,
                reason=REASON_DENIED_PATTERN,
                warning_message="This request is not accepted by the endpoint.",
            )

        recent = self._history.attempts(caller_id, since=now - ANALYSIS_WINDOW_MS)
        finding = self._analyzer.analyze(recent, category, caller_id, now)
        if finding is not None:
            escalation = self._escalate(caller_id, category, finding, now)
            message = finding.message
            if escalation.blocked:
                message = f"{message} {BLOCKED_MESSAGE}."
            self._log(key, now, BLOCKED, REASON_SUSPICIOUS, payload)
            return Decision(
                allowed=False,
                remaining_requests=0,
                reset_time=now + SUSPICIOUS_TIMEOUT_MS,
                retry_after_ms=SUSPICIOUS_TIMEOUT_MS,
                reason=REASON_SUSPICIOUS,
                warning_message=message,
            )

        result = self._strategies[config.strategy].check(key, config, now)
        if result.allowed:
            self._log(key, now, ALLOWED, None, payload)
            return Decision(
                allowed=True,
                remaining_requests=min(result.remaining, config.max_requests),
                reset_time=result.reset_at,
            )

        violations = self._history.violations(
            category, caller_id, since=now - VIOLATION_LOOKBACK_MS,
        )
        retry = max(result.retry_after_ms or 0, backoff_ms(config, violations))
        self._log(key, now, BLOCKED, REASON_RATE_LIMITED, payload)
        return Decision(
            allowed=False,
            remaining_requests=0,
            reset_time=now + retry,
            retry_after_ms=retry,
            reason=REASON_RATE_LIMITED,
            warning_message=(
                f"Rate limit reached. Try again in {math.ceil(retry / 1000)} seconds."
            ),
        )

    def _escalate(self, caller_id, category, finding, now) -> Escalation:
        escalation = self._penalties.escalate(caller_id, now)
        metrics.suspicious_total.labels(rule_id=finding.rule_id).inc()
        if escalation.blocked:
            metrics.sessions_blocked_total.inc()
            logger.warning(
                "Blocking caller %s until %d after %d warnings (rule=%s category=%s)",
                caller_id, escalation.blocked_until, escalation.warnings,
                finding.rule_id, category,
            )
        else:
            logger.warning(
                "Suspicious activity from caller %s (rule=%s category=%s warnings=%d) %s",
                caller_id, finding.rule_id, category, escalation.warnings,
                finding.evidence,
            )
        return escalation

    def _log(self, key: CallerKey, now: int, outcome: str, reason, payload) -> None:
        self._history.append(AttemptRecord(
            timestamp=now,
            category=key.category,
            caller_id=key.caller_id,
            outcome=outcome,
            reason=reason,
            metadata=_payload_shape(payload),
        ))

    def _label(self, category: str) -> str:
        # Unknown categories share one label so callers can't explode cardinality.
        return category if category in self.limits else "unknown"

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> dict[str, int]:
        """Evict expired counters, stale history and forgotten warnings.

        The blocklist is never touched: a block runs its full duration.
        """
        with self._lock:
            now = self.clock.now()
            evicted = {
                name: strategy.sweep(now)
                for name, strategy in self._strategies.items()
            }
            evicted["history"] = self._history.prune(now)
            evicted["warnings"] = self._penalties.forget_warnings(self._history.callers())
            tracked = self.tracked_keys()
            history_size = len(self._history)
            blocked = self._penalties.blocked_count(now)

        for kind, count in evicted.items():
            if count:
                metrics.evicted_total.labels(kind=kind).inc(count)
        for name, count in tracked.items():
            metrics.tracked_keys.labels(strategy=name).set(count)
        metrics.history_records.set(history_size)
        metrics.blocked_sessions.set(blocked)
        logger.debug("Cleanup evicted %s", evicted)
        return evicted

    def stats(self) -> Stats:
        with self._lock:
            now = self.clock.now()
            summary = self._history.summary()
            return Stats(
                total_requests=summary["total_requests"],
                blocked_requests=summary["blocked_requests"],
                blocked_session_count=self._penalties.blocked_count(now),
                top_endpoints=[EndpointCount(c, n) for c, n in summary["top_endpoints"]],
                recent_activity=summary["recent_activity"],
            )

    def reset_caller_state(self, caller_id: str) -> None:
        """Admin override: clear block, warnings, counters and history for a caller."""
        with self._lock:
            self._penalties.reset(caller_id)
            for strategy in self._strategies.values():
                strategy.forget(caller_id)
            self._history.forget(caller_id)
        logger.info("Rate limit state reset for caller %s", caller_id)

    def blocked_until(self, caller_id: str) -> int | None:
        with self._lock:
            return self._penalties.blocked_until(caller_id, self.clock.now())

    def warnings(self, caller_id: str) -> int:
        with self._lock:
            return self._penalties.warnings(caller_id)

    def tracked_keys(self) -> dict[str, int]:
        with self._lock:
            return {name: len(s) for name, s in self._strategies.items()}
