"""Repeated violations — a caller that keeps hitting the limit.

A single denial is normal.  More than 5 denials in the analyzer window
means the caller is ignoring retry hints.
"""

from limiter.rules import Rule


class RepeatViolator(Rule):
    id = "repeat_violator"
    name = "Repeated Violations"
    message = "Multiple rate limit violations. Extended cooldown applied."
    threshold = 5

    def trigger(self, attempts, category, now):
        return sum(1 for a in attempts if a.blocked) > self.threshold

    def evidence(self, attempts, category, now):
        blocked = sum(1 for a in attempts if a.blocked)
        return {
            "blocked_attempts": blocked,
            "block_rate": round(blocked / max(len(attempts), 1), 2),
        }
