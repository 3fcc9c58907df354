from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")

USD_PLACES = 2
RATIO_PLACES = 4
HOUR_SECONDS = 3600
DAY_SECONDS = 86_400


def usd(value: float) -> float:
    # Adding 0.0 folds -0.0 into 0.0.
    return round(value, USD_PLACES) + 0.0


def ratio(value: float) -> float:
    return round(value, RATIO_PLACES) + 0.0


def safe_ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return ratio(numerator / denominator)


def isoformat_ts(timestamp: int | None) -> str | None:
    if timestamp is None:
        return None
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


def hour_bucket(timestamp: int) -> int:
    return timestamp - timestamp % HOUR_SECONDS


def day_label(timestamp: int | None) -> str:
    if timestamp is None:
        return "unknown"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


def top_k(
    items: Iterable[T],
    key: Callable[[T], Any],
    limit: int,
) -> list[T]:
    """Sort ascending by ``key`` (callers negate for descending) and keep ``limit`` items."""

    return sorted(items, key=key)[:limit]


def most_recent_buckets(buckets: dict[int, T], limit: int) -> list[tuple[int, T]]:
    """Sort buckets chronologically, then keep the newest ``limit``."""

    ordered = sorted(buckets.items())
    return ordered[-limit:] if limit > 0 else []


def dedupe(items: Iterable[T], key: Callable[[T], Any]) -> list[T]:
    """Drop repeated records by natural key, keeping the first occurrence."""

    seen: set[Any] = set()
    unique: list[T] = []
    for item in items:
        marker = key(item)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique
