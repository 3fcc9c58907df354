"""Perpetuals digest: swap volume, open interest, liquidations and whales."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Sequence

from chainpulse.domain import DerivativesEntity

from .common import dedupe, isoformat_ts, safe_ratio, top_k, usd

# Each observed position update is worth this much USD in the whale score.
POSITION_UPDATE_WEIGHT_USD = 10_000.0

ASSET_LIMIT = 30
WHALE_LIMIT = 30
LIQUIDATION_LIMIT = 25


@dataclass(slots=True)
class _AssetStats:
    long_usd: float = 0.0
    short_usd: float = 0.0
    long_count: int = 0
    short_count: int = 0
    liquidation_usd: float = 0.0
    liquidation_count: int = 0


@dataclass(slots=True)
class _AccountStats:
    swap_volume: float = 0.0
    max_position: float = 0.0
    position_updates: int = 0
    liquidated_usd: float = 0.0

    @property
    def score(self) -> float:
        return (
            self.swap_volume
            + self.max_position
            + self.position_updates * POSITION_UPDATE_WEIGHT_USD
        )


def _swap_volume(entry: DerivativesEntity) -> float:
    # Mean of the two legs of one trade.
    return (entry.amount_in_usd + entry.amount_out_usd) / 2


def _open_positions(
    snapshots: Sequence[DerivativesEntity],
    positions: Sequence[DerivativesEntity],
) -> dict[tuple[str, str, str], DerivativesEntity]:
    """Latest observation per (account, asset, side)."""

    latest: dict[tuple[str, str, str], DerivativesEntity] = {}
    for entry in list(snapshots) + list(positions):
        if entry.position_side is None:
            continue
        key = (entry.account_id or "unknown", entry.asset_symbol or "UNKNOWN", entry.position_side)
        current = latest.get(key)
        if current is None or (entry.timestamp or 0, entry.entry_id) > (
            current.timestamp or 0,
            current.entry_id,
        ):
            latest[key] = entry
    return latest


def summarize_derivatives(entries: Sequence[DerivativesEntity]) -> dict[str, Any]:
    """Digest swaps, position snapshots, liquidations and positions."""

    entries = dedupe(
        entries,
        lambda e: (e.entry_id, e.entity_type, e.tag.protocol, e.tag.network),
    )
    swaps = [entry for entry in entries if entry.entity_type == "swap"]
    snapshots = [entry for entry in entries if entry.entity_type == "positionSnapshot"]
    liquidations = [entry for entry in entries if entry.entity_type == "liquidation"]
    positions = [entry for entry in entries if entry.entity_type == "position"]

    assets: dict[str, _AssetStats] = defaultdict(_AssetStats)
    accounts: dict[str, _AccountStats] = defaultdict(_AccountStats)

    long_oi = 0.0
    short_oi = 0.0
    for (_, asset, side), entry in _open_positions(snapshots, positions).items():
        if entry.balance_usd <= 0:
            continue
        stats = assets[asset]
        if side == "long":
            long_oi += entry.balance_usd
            stats.long_usd += entry.balance_usd
            stats.long_count += 1
        else:
            short_oi += entry.balance_usd
            stats.short_usd += entry.balance_usd
            stats.short_count += 1

    for entry in liquidations:
        stats = assets[entry.asset_symbol or "UNKNOWN"]
        stats.liquidation_usd += entry.amount_usd
        stats.liquidation_count += 1
        if entry.account_id:
            accounts[entry.account_id].liquidated_usd += entry.amount_usd

    for entry in swaps:
        if entry.account_id:
            accounts[entry.account_id].swap_volume += _swap_volume(entry)
    for entry in snapshots + positions:
        if entry.account_id:
            account = accounts[entry.account_id]
            account.max_position = max(account.max_position, entry.balance_usd)
            if entry.entity_type == "positionSnapshot":
                account.position_updates += 1

    open_interest = long_oi + short_oi
    return {
        "overview": {
            "totalSwaps": len(swaps),
            "totalPositionSnapshots": len(snapshots),
            "totalLiquidations": len(liquidations),
            "totalPositions": len(positions),
            "totalSwapVolumeUSD": usd(sum(_swap_volume(entry) for entry in swaps)),
            "totalLiquidationUSD": usd(sum(entry.amount_usd for entry in liquidations)),
            "longOpenInterestUSD": usd(long_oi),
            "shortOpenInterestUSD": usd(short_oi),
            "longPercentage": usd(safe_ratio(long_oi, open_interest) * 100),
            "uniqueAccounts": len(accounts),
        },
        "assetBreakdown": [
            {
                "asset": asset,
                "longUSD": usd(stats.long_usd),
                "shortUSD": usd(stats.short_usd),
                "longPositions": stats.long_count,
                "shortPositions": stats.short_count,
                "longPercentage": usd(
                    safe_ratio(stats.long_usd, stats.long_usd + stats.short_usd) * 100
                ),
                "liquidationUSD": usd(stats.liquidation_usd),
                "liquidations": stats.liquidation_count,
            }
            for asset, stats in top_k(
                assets.items(),
                lambda item: (-(item[1].long_usd + item[1].short_usd + item[1].liquidation_usd), item[0]),
                ASSET_LIMIT,
            )
        ],
        "whaleAccounts": [
            {
                "account": account,
                "score": usd(stats.score),
                "swapVolumeUSD": usd(stats.swap_volume),
                "maxPositionUSD": usd(stats.max_position),
                "positionUpdates": stats.position_updates,
                "liquidatedUSD": usd(stats.liquidated_usd),
            }
            for account, stats in top_k(
                accounts.items(), lambda item: (-item[1].score, item[0]), WHALE_LIMIT
            )
        ],
        "largestLiquidations": [
            {
                "id": entry.entry_id,
                "account": entry.account_id,
                "asset": entry.asset_symbol,
                "side": entry.position_side,
                "amountUSD": usd(entry.amount_usd),
                "profitUSD": usd(entry.profit_usd),
                "timestamp": isoformat_ts(entry.timestamp),
            }
            for entry in top_k(
                liquidations, lambda e: (-e.amount_usd, e.entry_id), LIQUIDATION_LIMIT
            )
        ],
    }


__all__ = ["POSITION_UPDATE_WEIGHT_USD", "summarize_derivatives"]
