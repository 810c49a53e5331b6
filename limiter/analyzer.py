"""Behaviour analyzer — runs the abuse heuristics over a caller's history.

Pure with respect to limiter state: it reads the attempts it is handed and
returns a finding or None.  The facade decides what a finding costs.
"""

from dataclasses import dataclass, field

from limiter.history import ALLOWED, AttemptRecord
from limiter.rules import ALL_RULES, Rule

# How far back the heuristics look.
ANALYSIS_WINDOW_MS = 300_000


@dataclass(frozen=True)
class Finding:
    rule_id: str
    rule_name: str
    message: str
    evidence: dict = field(default_factory=dict)


class BehaviorAnalyzer:

    def __init__(self, rules: list[Rule] | None = None):
        self.rules = rules or ALL_RULES

    def analyze(self, recent: list[AttemptRecord], category: str,
                caller_id: str, now: int) -> Finding | None:
        """Evaluate every rule against *recent* plus the attempt in flight.

        *recent* should already be limited to the caller's check-phase
        records; anything outside the analysis window is ignored here.
        Rules run in order and the first one that fires wins.
        """
        attempts = [a for a in recent if now - a.timestamp < ANALYSIS_WINDOW_MS]
        if not attempts:
            return None
        # The attempt being decided counts toward its own burst.
        attempts.append(AttemptRecord(
            timestamp=now, category=category, caller_id=caller_id, outcome=ALLOWED,
        ))

        for rule in self.rules:
            if rule.trigger(attempts, category, now):
                return Finding(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    message=rule.message,
                    evidence=rule.evidence(attempts, category, now),
                )
        return None
