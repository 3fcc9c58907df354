"""Offset pagination shared by every domain fetcher."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from loguru import logger


DEFAULT_BATCH_SIZE = 1000

QueryRunner = Callable[[str], Mapping[str, Any]]
QueryBuilder = Callable[[int, int], str]


def hours_ago_timestamp(hours: float, *, now: datetime | None = None) -> int:
    """UNIX timestamp ``hours`` before ``now`` (UTC)."""

    reference = now or datetime.now(timezone.utc)
    return int((reference - timedelta(hours=hours)).timestamp())


def _extract_rows(payload: Mapping[str, Any], entity: str | None) -> list[dict[str, Any]]:
    if entity is not None:
        rows = payload.get(entity)
    else:
        rows = next(iter(payload.values()), None)
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


def fetch_all(
    run_query: QueryRunner,
    build_query: QueryBuilder,
    limit: int,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    entity: str | None = None,
) -> list[dict[str, Any]]:
    """Collect up to ``limit`` rows by issuing ``first``/``skip`` batches.

    ``build_query(first, skip)`` returns the query text for one batch and
    ``run_query`` executes it, returning ``{entity: [rows]}``. The loop stops
    once ``limit`` rows are collected or a batch comes back shorter than
    requested. ``skip`` advances by the rows actually returned. Request
    errors propagate to the caller.
    """

    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    rows: list[dict[str, Any]] = []
    skip = 0
    while len(rows) < limit:
        first = min(batch_size, limit - len(rows))
        chunk = _extract_rows(run_query(build_query(first, skip)), entity)
        rows.extend(chunk)
        logger.debug(
            "Fetched {} {} rows (skip={}, total={})",
            len(chunk),
            entity or "entity",
            skip,
            len(rows),
        )
        if len(chunk) < first:
            break
        skip += len(chunk)
    return rows[:limit]


__all__ = ["DEFAULT_BATCH_SIZE", "fetch_all", "hours_ago_timestamp"]
