"""Rapid fire — a burst of attempts in a few seconds.

No legitimate page in the vesting tools needs more than a handful of
provider calls per interaction.  More than 10 attempts inside 10 seconds,
across any categories, is a script or a stuck retry loop.
"""

from limiter.rules import Rule


class RapidFire(Rule):
    id = "rapid_fire"
    name = "Rapid Fire"
    message = "Too many requests in a short time period. Please slow down."
    burst_ms = 10_000
    threshold = 10

    def _burst(self, attempts, now):
        return [a for a in attempts if now - a.timestamp < self.burst_ms]

    def trigger(self, attempts, category, now):
        return len(self._burst(attempts, now)) > self.threshold

    def evidence(self, attempts, category, now):
        burst = self._burst(attempts, now)
        return {
            "burst_attempts": len(burst),
            "burst_window_ms": self.burst_ms,
        }
