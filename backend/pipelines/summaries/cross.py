"""Signals that only appear when DEX and lending activity are read together."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from chainpulse.domain import DexSwap, LendingEvent

from .common import dedupe, hour_bucket, isoformat_ts, most_recent_buckets, safe_ratio, top_k, usd

STABLECOINS = frozenset({"USDC", "USDT", "DAI", "GHO", "FRAX", "USDbC", "cbUSD"})

STABLE_PAIR_LIMIT = 10
ACTIVE_PAIR_LIMIT = 5
OVERLAP_LIMIT = 10
BORROW_MARKET_LIMIT = 5
HOURLY_LIMIT = 48
LEVERAGE_LOOP_LIMIT = 20

LEVERAGE_LOOP_NOTE = (
    "Heuristic association: net buying on this pair coincides with a lending market for a "
    "token named in the pair. This is not evidence of a causal leverage loop."
)


@dataclass(slots=True)
class _Actor:
    swap_count: int = 0
    borrow_usd: float = 0.0


@dataclass(slots=True)
class _Hour:
    swap_volume: float = 0.0
    borrow_volume: float = 0.0


def _is_stable_swap(swap: DexSwap) -> bool:
    return swap.token0_symbol in STABLECOINS or swap.token1_symbol in STABLECOINS


def _has_timestamp(timestamp: int | None) -> bool:
    return timestamp is not None and timestamp > 0


def _leverage_loops(
    pair_stats: Sequence[Mapping[str, Any]],
    markets: Sequence[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    # Plain substring containment; a short symbol can match an unrelated pair.
    loops: list[dict[str, Any]] = []
    for stats in pair_stats:
        if len(loops) >= LEVERAGE_LOOP_LIMIT:
            break
        net = stats.get("netUSD") or 0.0
        if net <= 0:
            continue
        pair = stats.get("pair") or ""
        market = next(
            (m for m in markets if m.get("token") and m["token"] in pair),
            None,
        )
        if market is None:
            continue
        loops.append(
            {
                "pair": pair,
                "netUSD": net,
                "dominantDirection": stats.get("dominantDirection"),
                "marketId": market.get("marketId"),
                "market": market.get("name"),
                "marketToken": market.get("token"),
                "marketUtilization": market.get("utilization"),
                "heuristic": True,
                "inference": LEVERAGE_LOOP_NOTE,
            }
        )
    return loops


def summarize_cross_protocol(
    swaps: Sequence[DexSwap],
    lending_events: Sequence[LendingEvent],
    dex_summary: Mapping[str, Any],
    lending_summary: Mapping[str, Any],
) -> dict[str, Any]:
    """Correlate swap flow with lending activity for the same window."""

    swaps = dedupe(swaps, lambda s: (s.swap_id, s.tag.protocol, s.tag.network))
    borrows = [
        event
        for event in dedupe(
            lending_events, lambda e: (e.event_id, e.event_type, e.tag.protocol, e.tag.network)
        )
        if event.event_type == "borrow"
    ]

    stable_volume = 0.0
    stable_pairs: dict[str, float] = defaultdict(float)
    actors: dict[str, _Actor] = defaultdict(_Actor)
    hours: dict[int, _Hour] = defaultdict(_Hour)

    for swap in swaps:
        if swap.sender:
            actors[swap.sender.lower()].swap_count += 1
        # Zero-value swaps count toward actor overlap but not toward volume.
        volume = max(swap.amount_usd, 0.0)
        if volume and _is_stable_swap(swap):
            stable_volume += volume
            stable_pairs[swap.pair] += volume
        if volume and _has_timestamp(swap.timestamp):
            hours[hour_bucket(swap.timestamp)].swap_volume += volume

    for event in borrows:
        if event.account_id:
            actors[event.account_id.lower()].borrow_usd += event.amount_usd
        if _has_timestamp(event.timestamp):
            hours[hour_bucket(event.timestamp)].borrow_volume += event.amount_usd

    overlapping = [
        (address, actor)
        for address, actor in actors.items()
        if actor.swap_count > 0 and actor.borrow_usd > 0
    ]

    dex_overview = dex_summary.get("overview") or {}
    lending_overview = lending_summary.get("overview") or {}
    total_volume = dex_overview.get("totalVolumeUSD") or 0.0
    window_borrows = lending_overview.get("windowBorrowVolumeUSD") or 0.0
    markets = lending_summary.get("markets") or []
    pair_stats = dex_summary.get("pairDirectionStats") or []

    return {
        "overview": {
            "totalSwapVolumeUSD": usd(total_volume),
            "windowBorrowVolumeUSD": usd(window_borrows),
            "stablecoinVolumeUSD": usd(stable_volume),
            "volumeToBorrowRatio": safe_ratio(total_volume, window_borrows),
            "stablecoinVolumeShare": safe_ratio(stable_volume, total_volume),
            "overlappingActorCount": len(overlapping),
        },
        "stablecoinPairs": [
            {"pair": pair, "volumeUSD": usd(volume)}
            for pair, volume in top_k(
                stable_pairs.items(), lambda item: (-item[1], item[0]), STABLE_PAIR_LIMIT
            )
        ],
        "mostActivePairs": [
            {
                "pair": stats.get("pair"),
                "swapCount": stats.get("swapCount"),
                "netUSD": stats.get("netUSD"),
                "dominantDirection": stats.get("dominantDirection"),
            }
            for stats in top_k(
                pair_stats,
                lambda s: (-(s.get("swapCount") or 0), s.get("pair") or ""),
                ACTIVE_PAIR_LIMIT,
            )
        ],
        "overlappingActors": [
            {
                "address": address,
                "swapCount": actor.swap_count,
                "borrowUSD": usd(actor.borrow_usd),
            }
            for address, actor in top_k(
                overlapping, lambda item: (-item[1].borrow_usd, item[0]), OVERLAP_LIMIT
            )
        ],
        "topBorrowMarkets": [
            {
                "marketId": market.get("marketId"),
                "name": market.get("name"),
                "token": market.get("token"),
                "totalBorrowsUSD": market.get("totalBorrowsUSD"),
                "windowBorrowUSD": market.get("windowBorrowUSD"),
                "utilization": market.get("utilization"),
            }
            for market in top_k(
                markets,
                lambda m: (-(m.get("totalBorrowsUSD") or 0.0), m.get("marketId") or ""),
                BORROW_MARKET_LIMIT,
            )
        ],
        "volumeVsBorrowByHour": [
            {
                "hour": isoformat_ts(bucket),
                "swapVolumeUSD": usd(stats.swap_volume),
                "borrowVolumeUSD": usd(stats.borrow_volume),
            }
            for bucket, stats in most_recent_buckets(hours, HOURLY_LIMIT)
        ],
        "leverageLoops": _leverage_loops(pair_stats, markets),
        "notes": [
            "volumeToBorrowRatio compares window swap volume with window borrow volume.",
            "leverageLoops are matched by token symbol text and are indicative only.",
        ],
    }


__all__ = ["STABLECOINS", "summarize_cross_protocol"]
