"""DEX swap digest: volumes, pools, whales, large-trade distribution and flows."""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Sequence

from chainpulse.domain import DexSwap

from .common import (
    day_label,
    dedupe,
    hour_bucket,
    isoformat_ts,
    most_recent_buckets,
    safe_ratio,
    top_k,
    usd,
)

WHALE_THRESHOLD_USD = 50_000.0
LARGE_SWAP_THRESHOLD_USD = 25_000.0

TOP_POOL_LIMIT = 80
WHALE_LIMIT = 80
LARGE_SWAP_LIMIT = 400
BUCKET_SAMPLE_LIMIT = 5
SAMPLE_SWAP_LIMIT = 50
TIME_BUCKET_LIMIT = 72
TOKEN_VOLUME_LIMIT = 50
FEE_TIER_LIMIT = 30
PAIR_DIRECTION_LIMIT = 60
DAILY_POOL_LIMIT = 40

# (label, inclusive floor, exclusive ceiling); None is unbounded.
LARGE_SWAP_BUCKETS: tuple[tuple[str, float, float | None], ...] = (
    ("50k-100k", 50_000.0, 100_000.0),
    ("100k-250k", 100_000.0, 250_000.0),
    ("250k-500k", 250_000.0, 500_000.0),
    ("500k-1M", 500_000.0, 1_000_000.0),
    ("1M+", 1_000_000.0, None),
)


@dataclass(slots=True)
class _PoolStats:
    pool_id: str
    pair: str
    fee_tier: str | None
    volume: float = 0.0
    count: int = 0
    token0_to_token1: float = 0.0
    token1_to_token0: float = 0.0


@dataclass(slots=True)
class _TraderStats:
    volume: float = 0.0
    count: int = 0
    largest: float = 0.0
    pools: set[str] = field(default_factory=set)
    first_seen: int | None = None
    last_seen: int | None = None


@dataclass(slots=True)
class _FlowStats:
    volume: float = 0.0
    count: int = 0


@dataclass(slots=True)
class _DailyPoolStats:
    day: str
    pool_id: str
    pair: str
    fee_tier: str | None
    volume: float = 0.0
    count: int = 0
    participants: dict[str, float] = field(default_factory=dict)


def _volume(swap: DexSwap) -> float:
    return swap.amount_usd if swap.amount_usd > 0 else 0.0


def _direction(swap: DexSwap) -> str:
    token0 = swap.token0_symbol or "TOKEN0"
    token1 = swap.token1_symbol or "TOKEN1"
    if swap.is_token0_to_token1:
        return f"{token0} -> {token1}"
    return f"{token1} -> {token0}"


def _swap_view(swap: DexSwap) -> dict[str, Any]:
    return {
        "id": swap.swap_id,
        "poolId": swap.pool_id,
        "pair": swap.pair,
        "amountUSD": usd(_volume(swap)),
        "direction": _direction(swap),
        "trader": swap.participant,
        "timestamp": isoformat_ts(swap.timestamp),
    }


def _largest_first(swap: DexSwap) -> tuple[float, str]:
    return (-_volume(swap), swap.swap_id)


def _bucket_for(amount: float) -> str | None:
    for label, floor, ceiling in LARGE_SWAP_BUCKETS:
        if amount >= floor and (ceiling is None or amount < ceiling):
            return label
    return None


def _overview(
    swaps: Sequence[DexSwap],
    pools: dict[str, _PoolStats],
    traders: dict[str, _TraderStats],
) -> dict[str, Any]:
    volumes = [_volume(swap) for swap in swaps]
    positive = [volume for volume in volumes if volume > 0]
    total = sum(volumes)
    timestamps = [swap.timestamp for swap in swaps if swap.timestamp is not None]
    return {
        "totalSwaps": len(swaps),
        "totalVolumeUSD": usd(total),
        "averageSwapUSD": usd(total / len(swaps)) if swaps else 0.0,
        "medianSwapUSD": usd(statistics.median(positive)) if positive else 0.0,
        "uniquePools": len(pools),
        "uniqueTraders": len(traders),
        "largeSwapCount": sum(1 for volume in volumes if volume >= LARGE_SWAP_THRESHOLD_USD),
        "windowStart": isoformat_ts(min(timestamps)) if timestamps else None,
        "windowEnd": isoformat_ts(max(timestamps)) if timestamps else None,
    }


def _large_swap_distribution(swaps: Sequence[DexSwap]) -> list[dict[str, Any]]:
    grouped: dict[str, list[DexSwap]] = {label: [] for label, _, _ in LARGE_SWAP_BUCKETS}
    for swap in swaps:
        label = _bucket_for(_volume(swap))
        if label is not None:
            grouped[label].append(swap)

    distribution: list[dict[str, Any]] = []
    for label, floor, ceiling in LARGE_SWAP_BUCKETS:
        members = grouped[label]
        distribution.append(
            {
                "range": label,
                "minUSD": usd(floor),
                "maxUSD": usd(ceiling) if ceiling is not None else None,
                "count": len(members),
                "volumeUSD": usd(sum(_volume(swap) for swap in members)),
                "samples": [
                    _swap_view(swap)
                    for swap in top_k(members, _largest_first, BUCKET_SAMPLE_LIMIT)
                ],
            }
        )
    return distribution


def summarize_dex(swaps: Sequence[DexSwap]) -> dict[str, Any]:
    """Digest a list of swaps into a bounded, deterministic structure."""

    swaps = dedupe(swaps, lambda s: (s.swap_id, s.tag.protocol, s.tag.network))
    pools: dict[str, _PoolStats] = {}
    traders: dict[str, _TraderStats] = defaultdict(_TraderStats)
    hourly: dict[int, _FlowStats] = defaultdict(_FlowStats)
    tokens: dict[str, _FlowStats] = defaultdict(_FlowStats)
    fee_tiers: dict[str, _FlowStats] = defaultdict(_FlowStats)
    fee_tier_pools: dict[str, set[str]] = defaultdict(set)
    pairs: dict[str, _PoolStats] = {}
    daily_pools: dict[tuple[str, str], _DailyPoolStats] = {}

    for swap in swaps:
        volume = _volume(swap)
        pool_id = swap.pool_id or "unknown"

        pool = pools.get(pool_id)
        if pool is None:
            pool = pools[pool_id] = _PoolStats(pool_id=pool_id, pair=swap.pair, fee_tier=swap.fee_tier)
        pool.volume += volume
        pool.count += 1

        pair = pairs.get(swap.pair)
        if pair is None:
            pair = pairs[swap.pair] = _PoolStats(pool_id=swap.pair, pair=swap.pair, fee_tier=None)
        pair.volume += volume
        pair.count += 1
        for stats in (pool, pair):
            if swap.is_token0_to_token1:
                stats.token0_to_token1 += volume
            else:
                stats.token1_to_token0 += volume

        participant = swap.participant
        if participant:
            trader = traders[participant]
            trader.volume += volume
            trader.count += 1
            trader.largest = max(trader.largest, volume)
            trader.pools.add(pool_id)
            if swap.timestamp is not None:
                if trader.first_seen is None or swap.timestamp < trader.first_seen:
                    trader.first_seen = swap.timestamp
                if trader.last_seen is None or swap.timestamp > trader.last_seen:
                    trader.last_seen = swap.timestamp

        if swap.timestamp is not None:
            bucket = hourly[hour_bucket(swap.timestamp)]
            bucket.volume += volume
            bucket.count += 1

        for symbol in {swap.token0_symbol, swap.token1_symbol} - {None}:
            tokens[symbol].volume += volume
            tokens[symbol].count += 1

        tier = swap.fee_tier or "unknown"
        fee_tiers[tier].volume += volume
        fee_tiers[tier].count += 1
        fee_tier_pools[tier].add(pool_id)

        day = day_label(swap.timestamp)
        daily = daily_pools.get((day, pool_id))
        if daily is None:
            daily = daily_pools[(day, pool_id)] = _DailyPoolStats(
                day=day, pool_id=pool_id, pair=swap.pair, fee_tier=swap.fee_tier
            )
        daily.volume += volume
        daily.count += 1
        if participant:
            daily.participants[participant] = daily.participants.get(participant, 0.0) + volume

    top_pools = [
        {
            "poolId": pool.pool_id,
            "pair": pool.pair,
            "feeTier": pool.fee_tier,
            "volumeUSD": usd(pool.volume),
            "swapCount": pool.count,
            "avgSwapUSD": usd(pool.volume / pool.count) if pool.count else 0.0,
            "netFlowUSD": usd(pool.token0_to_token1 - pool.token1_to_token0),
        }
        for pool in top_k(pools.values(), lambda p: (-p.volume, p.pool_id), TOP_POOL_LIMIT)
    ]

    whales = [
        {
            "address": address,
            "volumeUSD": usd(stats.volume),
            "swapCount": stats.count,
            "largestSwapUSD": usd(stats.largest),
            "poolsTouched": len(stats.pools),
            "firstSeen": isoformat_ts(stats.first_seen),
            "lastSeen": isoformat_ts(stats.last_seen),
        }
        for address, stats in top_k(
            ((address, stats) for address, stats in traders.items() if stats.volume >= WHALE_THRESHOLD_USD),
            lambda item: (-item[1].volume, item[0]),
            WHALE_LIMIT,
        )
    ]

    large_swaps = [
        _swap_view(swap)
        for swap in top_k(
            (swap for swap in swaps if _volume(swap) >= LARGE_SWAP_THRESHOLD_USD),
            _largest_first,
            LARGE_SWAP_LIMIT,
        )
    ]

    sample_swaps = [
        _swap_view(swap)
        for swap in top_k(
            swaps, lambda s: (-(s.timestamp or 0), s.swap_id), SAMPLE_SWAP_LIMIT
        )
    ]

    time_buckets = [
        {"hour": isoformat_ts(hour), "volumeUSD": usd(stats.volume), "swapCount": stats.count}
        for hour, stats in most_recent_buckets(hourly, TIME_BUCKET_LIMIT)
    ]

    token_volumes = [
        {"symbol": symbol, "volumeUSD": usd(stats.volume), "swapCount": stats.count}
        for symbol, stats in top_k(
            tokens.items(), lambda item: (-item[1].volume, item[0]), TOKEN_VOLUME_LIMIT
        )
    ]

    fee_tier_stats = [
        {
            "feeTier": tier,
            "volumeUSD": usd(stats.volume),
            "swapCount": stats.count,
            "poolCount": len(fee_tier_pools[tier]),
            "avgSwapUSD": usd(stats.volume / stats.count) if stats.count else 0.0,
        }
        for tier, stats in top_k(
            fee_tiers.items(), lambda item: (-item[1].volume, item[0]), FEE_TIER_LIMIT
        )
    ]

    pair_direction_stats = []
    for stats in top_k(
        pairs.values(),
        lambda p: (-abs(p.token0_to_token1 - p.token1_to_token0), p.pair),
        PAIR_DIRECTION_LIMIT,
    ):
        net = stats.token0_to_token1 - stats.token1_to_token0
        token0, _, token1 = stats.pair.partition("/")
        pair_direction_stats.append(
            {
                "pair": stats.pair,
                "token0ToToken1USD": usd(stats.token0_to_token1),
                "token1ToToken0USD": usd(stats.token1_to_token0),
                "netUSD": usd(net),
                "swapCount": stats.count,
                "dominantDirection": f"{token0} -> {token1}" if net >= 0 else f"{token1} -> {token0}",
                "imbalanceRatio": safe_ratio(abs(net), stats.volume),
            }
        )

    daily_pool_stats = []
    for daily in top_k(
        daily_pools.values(), lambda d: (-d.volume, d.day, d.pool_id), DAILY_POOL_LIMIT
    ):
        top_whale = None
        if daily.participants:
            address, volume = min(daily.participants.items(), key=lambda item: (-item[1], item[0]))
            top_whale = {"address": address, "volumeUSD": usd(volume)}
        daily_pool_stats.append(
            {
                "date": daily.day,
                "poolId": daily.pool_id,
                "pair": daily.pair,
                "feeTier": daily.fee_tier,
                "volumeUSD": usd(daily.volume),
                "swapCount": daily.count,
                "topTrader": top_whale,
            }
        )

    return {
        "overview": _overview(swaps, pools, traders),
        "topPools": top_pools,
        "whaleAddresses": whales,
        "largeSwaps": large_swaps,
        "largeSwapDistribution": _large_swap_distribution(swaps),
        "sampleSwaps": sample_swaps,
        "timeBuckets": time_buckets,
        "tokenVolumes": token_volumes,
        "feeTierStats": fee_tier_stats,
        "pairDirectionStats": pair_direction_stats,
        "dailyPoolStats": daily_pool_stats,
    }


__all__ = [
    "LARGE_SWAP_BUCKETS",
    "LARGE_SWAP_THRESHOLD_USD",
    "WHALE_THRESHOLD_USD",
    "summarize_dex",
]
