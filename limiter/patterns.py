"""Allow/deny pattern checks on caller-supplied payloads.

Payloads come from UI code and are not trusted to have any shape.  Only
string values are matched; anything else is ignored rather than raising.
"""

from limiter.config import LimitConfig


def _payload_strings(payload) -> list[str]:
    if isinstance(payload, str):
        return [payload]
    if isinstance(payload, dict):
        return [v for v in payload.values() if isinstance(v, str)]
    return []


def _any_match(patterns, values) -> bool:
    return any(p.search(v) for p in patterns for v in values)


def is_denied(config: LimitConfig, payload) -> bool:
    """True if the payload hits a deny pattern and no allow pattern."""
    if not config.deny_patterns:
        return False
    values = _payload_strings(payload)
    if not values:
        return False
    if config.allow_patterns and _any_match(config.allow_patterns, values):
        return False
    return _any_match(config.deny_patterns, values)
