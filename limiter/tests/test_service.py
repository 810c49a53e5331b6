"""Tests for the RateLimiter facade — composition order, budgets, penalties, admin."""

import re

import pytest

from limiter.clock import ManualClock
from limiter.config import (
    DEFAULT_LIMITS, FIXED_WINDOW, SLIDING_WINDOW, TOKEN_BUCKET, LimitConfig,
)
from limiter.penalties import BLOCK_DURATION_MS
from limiter.service import (
    REASON_BLOCKED, REASON_DENIED_PATTERN, REASON_RATE_LIMITED, REASON_SUSPICIOUS,
    SUSPICIOUS_TIMEOUT_MS, RateLimiter,
)

START = 1_700_000_000_000

TEST_LIMITS = {
    **DEFAULT_LIMITS,
    "fixed": LimitConfig(max_requests=3, window_ms=1000, strategy=FIXED_WINDOW),
    "sliding": LimitConfig(max_requests=2, window_ms=1000, strategy=SLIDING_WINDOW),
    "bucket": LimitConfig(max_requests=5, window_ms=1000, strategy=TOKEN_BUCKET),
}


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def limiter(clock):
    rl = RateLimiter(limits=TEST_LIMITS, clock=clock, start_cleanup=False)
    yield rl
    rl.close()


def _call(limiter, category, caller="s1", payload=None):
    """Check, then record if allowed, like a well-behaved service."""
    decision = limiter.check(category, caller, payload)
    if decision.allowed:
        limiter.record(category, caller)
    return decision


# ---------------------------------------------------------------------------
# Strategy dispatch through the facade
# ---------------------------------------------------------------------------

class TestFixedWindowThroughFacade:
    def test_fourth_call_denied_then_next_window_allowed(self, limiter, clock):
        for _ in range(3):
            assert _call(limiter, "fixed").allowed
        denied = limiter.check("fixed", "s1")
        assert not denied.allowed
        assert denied.reason == REASON_RATE_LIMITED
        assert denied.remaining_requests == 0

        clock.advance(1001)
        decision = _call(limiter, "fixed")
        assert decision.allowed
        assert decision.remaining_requests == 2


class TestSlidingWindowThroughFacade:
    def test_retry_measured_from_oldest_timestamp(self, limiter, clock):
        assert _call(limiter, "sliding").allowed
        clock.advance(500)
        assert _call(limiter, "sliding").allowed
        clock.advance(100)

        denied = limiter.check("sliding", "s1")
        assert not denied.allowed
        assert denied.retry_after_ms == 1000  # max(1000ms floor, 400ms until t=1000)
        assert denied.reset_time == START + 600 + denied.retry_after_ms

        clock.set(START + 1001)
        assert limiter.check("sliding", "s1").allowed


class TestTokenBucketThroughFacade:
    def test_refill_capped_at_capacity(self, limiter, clock):
        for _ in range(5):
            assert _call(limiter, "bucket").allowed
        assert not limiter.check("bucket", "s1").allowed

        # Eleven windows later, past the rapid-fire horizon too.
        clock.advance(11_000)
        # Exactly 5 tokens back, not 55.
        for _ in range(5):
            assert _call(limiter, "bucket", caller="s1").allowed
        assert not limiter.check("bucket", "s1").allowed


class TestBudget:
    def test_checks_alone_never_consume(self, limiter, clock):
        first = limiter.check("fixed", "s1")
        for _ in range(5):
            clock.advance(3000)  # stay clear of the rapid-fire heuristic
            assert limiter.check("fixed", "s1").remaining_requests == first.remaining_requests

    def test_record_spends_budget(self, limiter):
        before = limiter.check("fixed", "s1").remaining_requests
        limiter.record("fixed", "s1")
        assert limiter.check("fixed", "s1").remaining_requests == before - 1

    def test_remaining_always_within_limit(self, limiter, clock):
        for i in range(60):
            for category in ("fixed", "sliding", "bucket", "fee-calculator"):
                d = _call(limiter, category, caller=f"c{i % 7}")
                max_requests = TEST_LIMITS[category].max_requests
                assert 0 <= d.remaining_requests <= max_requests
            clock.advance(900)

    def test_anonymous_default_caller(self, limiter):
        limiter.record("fixed")
        assert limiter.usage("fixed", "anonymous").remaining == 1
        assert limiter.usage("fixed", "").remaining == 1

    def test_unknown_category_uses_default_limits(self, limiter):
        default = DEFAULT_LIMITS["transaction-lookup"]
        decision = limiter.check("no-such-endpoint", "s1")
        assert decision.allowed
        assert decision.remaining_requests == default.max_requests - 1

    def test_unknown_category_state_is_separate(self, limiter):
        limiter.record("no-such-endpoint", "s1")
        assert limiter.usage("transaction-lookup", "s1").remaining == 9
        assert limiter.usage("no-such-endpoint", "s1").remaining == 8


class TestBackoff:
    def test_denial_uses_larger_of_strategy_and_backoff(self, limiter, clock):
        # transaction-lookup: 10/min sliding, backoff x2 capped at 5 min.
        for _ in range(10):
            clock.advance(2000)
            assert _call(limiter, "transaction-lookup").allowed
        clock.advance(2000)

        first = limiter.check("transaction-lookup", "s1")
        assert first.reason == REASON_RATE_LIMITED
        assert first.retry_after_ms == 60_000  # 2**0 * window beats 40s strategy hint

        clock.advance(2000)
        second = limiter.check("transaction-lookup", "s1")
        assert second.retry_after_ms == 120_000

    def test_backoff_is_per_category(self, limiter, clock):
        for _ in range(10):
            clock.advance(2000)
            _call(limiter, "transaction-lookup")
        clock.advance(2000)
        limiter.check("transaction-lookup", "s1")

        for _ in range(3):
            clock.advance(2000)
            _call(limiter, "document-timestamp")
        clock.advance(2000)
        denied = limiter.check("document-timestamp", "s1")
        # No earlier violations on this category: one 5-minute window.
        assert denied.retry_after_ms == 300_000

    def test_no_multiplier_keeps_strategy_hint(self, limiter):
        for _ in range(3):
            _call(limiter, "fixed")
        assert limiter.check("fixed", "s1").retry_after_ms == 1000


# ---------------------------------------------------------------------------
# Behaviour analysis and penalties
# ---------------------------------------------------------------------------

class TestSuspiciousBehavior:
    def test_eleventh_attempt_in_10s_is_flagged(self, limiter, clock):
        for _ in range(10):
            assert limiter.check("fee-calculator", "s1").allowed
            clock.advance(500)
        decision = limiter.check("fee-calculator", "s1")
        assert not decision.allowed
        assert decision.reason == REASON_SUSPICIOUS
        assert decision.retry_after_ms == SUSPICIOUS_TIMEOUT_MS
        assert "slow down" in decision.warning_message
        assert limiter.warnings("s1") == 1
        assert limiter.blocked_until("s1") is None

    def test_flag_counts_denied_attempts_too(self, limiter, clock):
        for _ in range(3):
            _call(limiter, "fixed")
        for _ in range(7):
            assert not limiter.check("fixed", "s1").allowed
        assert limiter.check("fixed", "s1").reason == REASON_SUSPICIOUS

    def test_recorded_calls_do_not_double_count(self, limiter, clock):
        for _ in range(10):
            assert _call(limiter, "fee-calculator").allowed
            clock.advance(500)
        # 10 check+record pairs: only the 10 checks count, plus this one = 11.
        assert limiter.check("fee-calculator", "s1").reason == REASON_SUSPICIOUS

    def test_other_callers_unaffected(self, limiter, clock):
        for _ in range(11):
            limiter.check("fee-calculator", "noisy")
        assert limiter.check("fee-calculator", "quiet").allowed

    def test_second_flag_blocks_without_touching_counters(self, limiter, clock):
        for _ in range(3):
            _call(limiter, "fixed")
        for _ in range(7):
            limiter.check("network-status", "s1")
        first = limiter.check("network-status", "s1")   # 11th attempt in 10s
        assert first.reason == REASON_SUSPICIOUS
        second = limiter.check("network-status", "s1")
        assert second.reason == REASON_SUSPICIOUS
        until = limiter.blocked_until("s1")
        assert until == clock.now() + BLOCK_DURATION_MS

        usage_before = limiter.usage("fixed", "s1")
        keys_before = limiter.tracked_keys()
        blocked = limiter.check("fixed", "s1")
        assert blocked.reason == REASON_BLOCKED
        assert blocked.retry_after_ms == BLOCK_DURATION_MS
        assert limiter.usage("fixed", "s1") == usage_before
        assert limiter.tracked_keys() == keys_before

    def test_blocking_flag_tells_caller_they_are_blocked(self, limiter, clock):
        for _ in range(11):
            limiter.check("fee-calculator", "s1")
        blocking = limiter.check("fee-calculator", "s1")
        assert blocking.reason == REASON_SUSPICIOUS
        assert limiter.blocked_until("s1") == clock.now() + BLOCK_DURATION_MS
        assert "slow down" in blocking.warning_message
        assert "Session blocked" in blocking.warning_message

    def test_warning_flag_does_not_mention_block(self, limiter, clock):
        for _ in range(10):
            limiter.check("fee-calculator", "s1")
        warned = limiter.check("fee-calculator", "s1")
        assert warned.reason == REASON_SUSPICIOUS
        assert "blocked" not in warned.warning_message

    def test_block_is_application_wide(self, limiter, clock):
        for _ in range(12):
            limiter.check("fee-calculator", "s1")
        assert limiter.blocked_until("s1") is not None
        for category in DEFAULT_LIMITS:
            assert limiter.check(category, "s1").reason == REASON_BLOCKED

    def test_block_expires_but_warnings_remain(self, limiter, clock):
        for _ in range(12):
            limiter.check("fee-calculator", "s1")
        clock.advance(BLOCK_DURATION_MS)
        assert limiter.blocked_until("s1") is None
        assert limiter.check("fee-calculator", "s1").allowed
        assert limiter.warnings("s1") == 2


class TestPayloadPatterns:
    def test_test_address_denied(self, limiter):
        d = limiter.check("address-explorer", "s1", {"address": "1111111111abc"})
        assert not d.allowed
        assert d.reason == REASON_DENIED_PATTERN

    def test_real_address_allowed(self, limiter):
        d = limiter.check("address-explorer", "s1", {"address": "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"})
        assert d.allowed

    @pytest.mark.parametrize("payload", [None, 42, ["111111111111"], {"address": 1111111111}, {}])
    def test_malformed_payload_ignored(self, limiter, payload):
        assert limiter.check("address-explorer", "s1", payload).allowed

    def test_allow_pattern_overrides_deny(self, clock):
        limits = {
            **DEFAULT_LIMITS,
            "address-explorer": LimitConfig(
                max_requests=5, window_ms=60_000, strategy=SLIDING_WINDOW,
                allow_patterns=(re.compile(r"^1{10}faucet"),),
                deny_patterns=(re.compile(r"^1{10,}"),),
            ),
        }
        with RateLimiter(limits=limits, clock=clock, start_cleanup=False) as rl:
            assert rl.check("address-explorer", "s1", {"address": "1111111111faucet"}).allowed
            assert not rl.check("address-explorer", "s1", {"address": "11111111111"}).allowed


# ---------------------------------------------------------------------------
# Stats and admin
# ---------------------------------------------------------------------------

class TestStats:
    def test_every_check_is_one_attempt(self, limiter, clock):
        for _ in range(3):
            _call(limiter, "fixed")
            clock.advance(2000)
        limiter.check("sliding", "s2")
        limiter.check("address-explorer", "s3", {"address": "3333333333"})

        stats = limiter.stats()
        assert stats.total_requests == 5
        assert stats.blocked_requests == 1
        assert stats.blocked_session_count == 0
        assert stats.top_endpoints[0] == ("fixed", 3)
        assert stats.top_endpoints[0].category == "fixed"
        assert len(stats.recent_activity) == 8  # 5 checks + 3 records

    def test_history_keeps_payload_shape_not_values(self, limiter):
        payload = {"address": "bc1qexampleaddress", "page": 2}
        limiter.check("address-explorer", "s1", payload)
        payload["address"] = "bc1qchangedlater"
        record = limiter.stats().recent_activity[-1]
        assert record.metadata == {"address": "str", "page": "int"}
        assert "bc1q" not in repr(record)

    def test_blocked_sessions_counted(self, limiter):
        for _ in range(12):
            limiter.check("fee-calculator", "s1")
        assert limiter.stats().blocked_session_count == 1


class TestResetCallerState:
    def test_reset_clears_block_warnings_and_counters(self, limiter, clock):
        for _ in range(3):
            _call(limiter, "fixed")
        _call(limiter, "sliding", caller="s10")
        for _ in range(12):
            limiter.check("network-status", "s1")
        assert limiter.check("fixed", "s1").reason == REASON_BLOCKED

        limiter.reset_caller_state("s1")
        assert limiter.blocked_until("s1") is None
        assert limiter.warnings("s1") == 0
        decision = limiter.check("fixed", "s1")
        assert decision.allowed
        assert decision.remaining_requests == 2
        # A caller id that merely contains "s1" keeps its state.
        assert limiter.usage("sliding", "s10").remaining == 0
