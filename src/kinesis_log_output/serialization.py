from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any

CIRCULAR_PLACEHOLDER = "[Circular]"
MAX_LOG_CHARS = 1024


def safe_dumps(value: Any) -> str:
    """Serialize ``value`` to compact JSON without ever raising.

    Cyclic references are replaced with a placeholder, non-finite floats
    become null and values JSON cannot represent fall back to ``str()``.
    """

    return json.dumps(
        _break_cycles(value, active=set()),
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
        default=str,
    )


def truncate(text: str, limit: int = MAX_LOG_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit]


def _break_cycles(value: Any, *, active: set[int]) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value

    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in active:
            return CIRCULAR_PLACEHOLDER

        active.add(marker)
        try:
            if isinstance(value, Mapping):
                return {
                    _mapping_key(key): _break_cycles(item, active=active)
                    for key, item in value.items()
                }
            return [_break_cycles(item, active=active) for item in value]
        finally:
            active.discard(marker)

    return value


def _mapping_key(key: Any) -> Any:
    if isinstance(key, float) and not math.isfinite(key):
        return str(key)
    if isinstance(key, (str, int, float, bool)) or key is None:
        return key
    return str(key)
