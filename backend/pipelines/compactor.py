"""Size-bounded JSON serialization for report prompt sections."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from loguru import logger

TRUNCATION_MARKER = "\n... [TRUNCATED DUE TO SIZE]"
CIRCULAR_MARKER = "[Circular]"


def _sanitize(value: Any, seen: set[int]) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return _sanitize(float(value), seen)
    if isinstance(value, Enum):
        return _sanitize(value.value, seen)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if callable(value):
        return None

    marker = id(value)
    if marker in seen:
        return CIRCULAR_MARKER
    seen.add(marker)

    if is_dataclass(value) and not isinstance(value, type):
        return _sanitize(asdict(value), seen)
    if isinstance(value, dict):
        return {str(key): _sanitize(item, seen) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_sanitize(item, seen) for item in value]
    return str(value)


def serialize(value: Any) -> str:
    """Serialize ``value`` to compact JSON, degrading to ``"{}"`` on failure."""

    if value is None:
        return "[]"
    try:
        return json.dumps(_sanitize(value, set()), separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError, RecursionError):
        logger.exception("Failed to serialize payload section; substituting empty object")
        return "{}"


def compact(value: Any, max_chars: int) -> str:
    """Serialize ``value`` and hard-truncate it to ``max_chars`` characters.

    The result is never longer than ``max_chars + len(TRUNCATION_MARKER)``; a
    truncated tail is not valid JSON.
    """

    if max_chars < 0:
        raise ValueError("max_chars must be non-negative")
    text = serialize(value)
    if len(text) <= max_chars:
        return text
    logger.debug("Truncating payload section from {} to {} chars", len(text), max_chars)
    return text[:max_chars] + TRUNCATION_MARKER


__all__ = ["CIRCULAR_MARKER", "TRUNCATION_MARKER", "compact", "serialize"]
