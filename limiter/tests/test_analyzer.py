"""Tests for BehaviorAnalyzer — rule ordering, window, in-flight attempt."""

from limiter.analyzer import ANALYSIS_WINDOW_MS, BehaviorAnalyzer
from limiter.history import ALLOWED, BLOCKED, AttemptRecord
from limiter.rules.repeat_violator import RepeatViolator

NOW = 10_000_000


def _attempt(age_ms=0, category="transaction-lookup", outcome=ALLOWED):
    return AttemptRecord(timestamp=NOW - age_ms, category=category,
                         caller_id="s1", outcome=outcome)


class TestAnalyze:
    def setup_method(self):
        self.analyzer = BehaviorAnalyzer()

    def test_no_history_is_clean(self):
        assert self.analyzer.analyze([], "fee-calculator", "s1", NOW) is None

    def test_in_flight_attempt_counts_toward_burst(self):
        """10 prior attempts + the current one = 11 inside 10s."""
        recent = [_attempt(age_ms=i * 100) for i in range(10)]
        finding = self.analyzer.analyze(recent, "fee-calculator", "s1", NOW)
        assert finding is not None
        assert finding.rule_id == "rapid_fire"

    def test_nine_prior_attempts_are_clean(self):
        recent = [_attempt(age_ms=i * 100) for i in range(9)]
        assert self.analyzer.analyze(recent, "fee-calculator", "s1", NOW) is None

    def test_outcome_does_not_matter_for_burst(self):
        recent = [_attempt(age_ms=i * 100, outcome=BLOCKED if i % 2 else ALLOWED)
                  for i in range(10)]
        finding = self.analyzer.analyze(recent, "fee-calculator", "s1", NOW)
        assert finding.rule_id == "rapid_fire"

    def test_attempts_outside_window_ignored(self):
        recent = [_attempt(age_ms=ANALYSIS_WINDOW_MS, outcome=BLOCKED) for _ in range(10)]
        assert self.analyzer.analyze(recent, "fee-calculator", "s1", NOW) is None

    def test_first_matching_rule_wins(self):
        # Both rapid fire and repeat violator conditions hold.
        recent = [_attempt(age_ms=100, outcome=BLOCKED) for _ in range(12)]
        finding = self.analyzer.analyze(recent, "fee-calculator", "s1", NOW)
        assert finding.rule_id == "rapid_fire"

    def test_repeat_violator_message(self):
        recent = [_attempt(age_ms=60_000 + i * 1000, outcome=BLOCKED) for i in range(6)]
        finding = self.analyzer.analyze(recent, "fee-calculator", "s1", NOW)
        assert finding.rule_id == "repeat_violator"
        assert finding.message == RepeatViolator.message
        assert finding.evidence["blocked_attempts"] == 6

    def test_address_scan_needs_address_category(self):
        recent = [_attempt(age_ms=30_000 + i * 1000, category="address-explorer")
                  for i in range(20)]
        assert self.analyzer.analyze(recent, "fee-calculator", "s1", NOW) is None
        finding = self.analyzer.analyze(recent, "address-explorer", "s1", NOW)
        assert finding.rule_id == "address_scan"

    def test_custom_rule_set(self):
        analyzer = BehaviorAnalyzer(rules=[RepeatViolator()])
        recent = [_attempt(age_ms=100) for _ in range(20)]
        assert analyzer.analyze(recent, "fee-calculator", "s1", NOW) is None
