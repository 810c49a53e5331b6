# Abuse heuristics as Python classes, one per file.
#
# Each rule targets one abuse shape and is tuned and tested on its own;
# there is deliberately no combined score.  The analyzer runs them in
# order and the first one that fires explains the denial to the caller.


class Rule:
    """Base heuristic. Subclass and implement trigger()."""

    id: str
    name: str
    message: str  # shown to the caller when the rule fires

    def trigger(self, attempts: list, category: str, now: int) -> bool:
        """Given the caller's recent attempts (current one last), flag abuse?

        *attempts* are AttemptRecords from the analyzer window, oldest
        first, across every category the caller touched.
        """
        raise NotImplementedError

    def evidence(self, attempts: list, category: str, now: int) -> dict:
        """Summarize what the rule saw, for logs and metrics."""
        return {}


from limiter.rules.rapid_fire import RapidFire
from limiter.rules.address_scan import AddressScan
from limiter.rules.endpoint_scan import EndpointScan
from limiter.rules.repeat_violator import RepeatViolator

ALL_RULES = [RapidFire(), AddressScan(), EndpointScan(), RepeatViolator()]
