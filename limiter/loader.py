"""Load a limits table from YAML."""

import re
from pathlib import Path

import yaml

from limiter.config import DEFAULT_CATEGORY, STRATEGY_NAMES, LimitConfig

_REQUIRED_FIELDS = ("max_requests", "window_ms", "strategy")
_OPTIONAL_FIELDS = (
    "burst_allowance",
    "backoff_multiplier",
    "max_backoff_ms",
    "allow_patterns",
    "deny_patterns",
)

BUNDLED_LIMITS = Path(__file__).resolve().parent / "limits" / "bitcoin_tools.yml"


def load_limits(path: str | Path = BUNDLED_LIMITS) -> dict[str, LimitConfig]:
    """Parse *path* and return a category → LimitConfig table."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Limits file not found: {path}")

    with open(path) as f:
        document = yaml.safe_load(f)

    if not isinstance(document, dict) or not isinstance(document.get("limits"), dict):
        raise ValueError(f"{path.name}: expected a top-level 'limits' mapping")

    table = {}
    for category, definition in document["limits"].items():
        table[category] = _build_config(path, category, definition)

    if DEFAULT_CATEGORY not in table:
        raise ValueError(
            f"{path.name}: default category '{DEFAULT_CATEGORY}' is missing"
        )
    return table


def _build_config(path: Path, category: str, definition) -> LimitConfig:
    if not isinstance(definition, dict):
        raise ValueError(f"{path.name}: '{category}' must be a mapping")

    for field in _REQUIRED_FIELDS:
        if field not in definition:
            raise ValueError(
                f"{path.name}: '{category}' missing required field '{field}'"
            )

    unknown = set(definition) - set(_REQUIRED_FIELDS) - set(_OPTIONAL_FIELDS)
    if unknown:
        raise ValueError(
            f"{path.name}: '{category}' has unknown fields {sorted(unknown)}"
        )

    strategy = definition["strategy"]
    if strategy not in STRATEGY_NAMES:
        raise ValueError(f"{path.name}: '{category}' unknown strategy '{strategy}'")

    max_requests = int(definition["max_requests"])
    window_ms = int(definition["window_ms"])
    if max_requests < 1 or window_ms < 1:
        raise ValueError(
            f"{path.name}: '{category}' max_requests and window_ms must be positive"
        )

    max_backoff = definition.get("max_backoff_ms")
    return LimitConfig(
        max_requests=max_requests,
        window_ms=window_ms,
        strategy=strategy,
        burst_allowance=int(definition.get("burst_allowance", 0)),
        backoff_multiplier=definition.get("backoff_multiplier"),
        max_backoff_ms=int(max_backoff) if max_backoff is not None else None,
        allow_patterns=_compile(path, category, definition.get("allow_patterns", [])),
        deny_patterns=_compile(path, category, definition.get("deny_patterns", [])),
    )


def _compile(path: Path, category: str, patterns) -> tuple[re.Pattern, ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ValueError(
                f"{path.name}: '{category}' invalid pattern {pattern!r}: {e}"
            ) from e
    return tuple(compiled)
