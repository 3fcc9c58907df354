"""Lending digest: market health, risk signals, flows and account exposure."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Sequence

from chainpulse.domain import LendingEvent, LendingMarket

from .common import dedupe, isoformat_ts, ratio, safe_ratio, top_k, usd

RISK_UTILIZATION_THRESHOLD = 0.55
LARGE_EVENT_THRESHOLD_USD = 25_000.0
DAYS_PER_YEAR = 365

MARKET_LIMIT = 80
RISK_SIGNAL_LIMIT = 50
LARGE_EVENT_LIMIT = 150
LEADER_LIMIT = 30
LIQUIDATION_LIMIT = 50
WHALE_EXPOSURE_LIMIT = 40


@dataclass(slots=True)
class _AccountFlow:
    total: float = 0.0
    count: int = 0


def _daily_velocity(balance: float, annual_rate_pct: float | None) -> float:
    if not annual_rate_pct:
        return 0.0
    return balance * (annual_rate_pct / 100) / DAYS_PER_YEAR


def _market_view(
    market: LendingMarket,
    window_borrows: dict[str, float],
    window_deposits: dict[str, float],
) -> dict[str, Any]:
    deposits = market.total_deposits_usd
    borrows = market.total_borrows_usd
    utilization = safe_ratio(borrows, deposits)
    borrow_rate = market.variable_rate("BORROWER")
    supply_rate = market.variable_rate("LENDER")

    threshold_usd = None
    headroom_usd = None
    buffer_pct = None
    if market.liquidation_threshold is not None and deposits > 0:
        threshold_usd = deposits * market.liquidation_threshold / 100
        headroom_usd = threshold_usd - borrows
        buffer_pct = safe_ratio(headroom_usd, threshold_usd)

    return {
        "marketId": market.market_id,
        "name": market.name,
        "token": market.token,
        "protocol": market.tag.protocol,
        "network": market.tag.network,
        "isActive": market.is_active,
        "tvlUSD": usd(market.total_value_locked_usd),
        "totalDepositsUSD": usd(deposits),
        "totalBorrowsUSD": usd(borrows),
        "utilization": utilization,
        "liquidationThreshold": market.liquidation_threshold,
        "maximumLTV": market.maximum_ltv,
        "liquidationBufferUSD": usd(deposits - borrows),
        "liquidationThresholdUSD": usd(threshold_usd) if threshold_usd is not None else None,
        "liquidationHeadroomUSD": usd(headroom_usd) if headroom_usd is not None else None,
        "liquidationBufferPct": buffer_pct,
        "borrowRate": ratio(borrow_rate) if borrow_rate is not None else None,
        "supplyRate": ratio(supply_rate) if supply_rate is not None else None,
        "dailyBorrowVelocityUSD": usd(_daily_velocity(borrows, borrow_rate)),
        "dailySupplyVelocityUSD": usd(_daily_velocity(deposits, supply_rate)),
        "windowBorrowUSD": usd(window_borrows.get(market.market_id, 0.0)),
        "windowDepositUSD": usd(window_deposits.get(market.market_id, 0.0)),
        "cumulativeLiquidateUSD": usd(market.cumulative_liquidate_usd),
    }


def _risk_signal(view: dict[str, Any]) -> dict[str, Any] | None:
    reasons: list[str] = []
    if view["utilization"] >= RISK_UTILIZATION_THRESHOLD:
        reasons.append(
            f"Utilization {view['utilization']:.2%} at or above {RISK_UTILIZATION_THRESHOLD:.0%}"
        )
    if view["liquidationBufferUSD"] < 0:
        reasons.append("Borrows exceed deposits (negative liquidation buffer)")
    if not reasons:
        return None
    return {
        "marketId": view["marketId"],
        "name": view["name"],
        "token": view["token"],
        "utilization": view["utilization"],
        "liquidationBufferUSD": view["liquidationBufferUSD"],
        "liquidationBufferPct": view["liquidationBufferPct"],
        "reasons": reasons,
    }


def _event_view(event: LendingEvent) -> dict[str, Any]:
    return {
        "id": event.event_id,
        "account": event.account_id,
        "marketId": event.market_id,
        "market": event.market_name,
        "asset": event.asset_symbol,
        "amountUSD": usd(event.amount_usd),
        "timestamp": isoformat_ts(event.timestamp),
    }


def _leaders(flows: dict[str, _AccountFlow]) -> list[dict[str, Any]]:
    return [
        {"account": account, "totalUSD": usd(flow.total), "count": flow.count}
        for account, flow in top_k(
            flows.items(), lambda item: (-item[1].total, item[0]), LEADER_LIMIT
        )
    ]


def _largest(events: Sequence[LendingEvent]) -> list[dict[str, Any]]:
    return [
        _event_view(event)
        for event in top_k(
            (event for event in events if event.amount_usd >= LARGE_EVENT_THRESHOLD_USD),
            lambda e: (-e.amount_usd, e.event_id),
            LARGE_EVENT_LIMIT,
        )
    ]


def summarize_lending(
    markets: Sequence[LendingMarket],
    events: Sequence[LendingEvent],
) -> dict[str, Any]:
    """Digest lending market snapshots and borrow/deposit/liquidation events."""

    markets = dedupe(markets, lambda m: (m.market_id, m.tag.protocol, m.tag.network))
    events = dedupe(
        events, lambda e: (e.event_id, e.event_type, e.tag.protocol, e.tag.network)
    )
    borrows = [event for event in events if event.event_type == "borrow"]
    deposits = [event for event in events if event.event_type == "deposit"]
    liquidations = [event for event in events if event.event_type == "liquidation"]

    window_borrows: dict[str, float] = defaultdict(float)
    window_deposits: dict[str, float] = defaultdict(float)
    borrowers: dict[str, _AccountFlow] = defaultdict(_AccountFlow)
    depositors: dict[str, _AccountFlow] = defaultdict(_AccountFlow)

    for event in borrows:
        if event.market_id:
            window_borrows[event.market_id] += event.amount_usd
        if event.account_id:
            borrowers[event.account_id].total += event.amount_usd
            borrowers[event.account_id].count += 1
    for event in deposits:
        if event.market_id:
            window_deposits[event.market_id] += event.amount_usd
        if event.account_id:
            depositors[event.account_id].total += event.amount_usd
            depositors[event.account_id].count += 1

    views = [_market_view(market, window_borrows, window_deposits) for market in markets]
    risk_signals = [signal for signal in map(_risk_signal, views) if signal is not None]

    total_deposits = sum(market.total_deposits_usd for market in markets)
    total_borrows = sum(market.total_borrows_usd for market in markets)

    exposure = []
    for account in set(borrowers) & set(depositors):
        borrowed = borrowers[account].total
        deposited = depositors[account].total
        exposure.append(
            {
                "account": account,
                "borrowUSD": usd(borrowed),
                "depositUSD": usd(deposited),
                "netExposureUSD": usd(borrowed - deposited),
            }
        )

    return {
        "overview": {
            "marketsCovered": len(markets),
            "totalDepositsUSD": usd(total_deposits),
            "totalBorrowsUSD": usd(total_borrows),
            "borrowToDepositRatio": safe_ratio(total_borrows, total_deposits),
            "windowBorrowVolumeUSD": usd(sum(event.amount_usd for event in borrows)),
            "windowDepositVolumeUSD": usd(sum(event.amount_usd for event in deposits)),
            "windowLiquidationVolumeUSD": usd(sum(event.amount_usd for event in liquidations)),
            "borrowEvents": len(borrows),
            "depositEvents": len(deposits),
            "liquidationEvents": len(liquidations),
            "uniqueBorrowers": len(borrowers),
            "uniqueDepositors": len(depositors),
            "riskSignalCount": len(risk_signals),
        },
        "markets": top_k(views, lambda v: (-v["totalDepositsUSD"], v["marketId"]), MARKET_LIMIT),
        "riskSignals": top_k(
            risk_signals, lambda s: (-s["utilization"], s["marketId"]), RISK_SIGNAL_LIMIT
        ),
        "largeBorrows": _largest(borrows),
        "largeDeposits": _largest(deposits),
        "topBorrowers": _leaders(borrowers),
        "topDepositors": _leaders(depositors),
        "whaleExposure": top_k(
            exposure, lambda e: (-abs(e["netExposureUSD"]), e["account"]), WHALE_EXPOSURE_LIMIT
        ),
        "liquidations": [
            {
                **_event_view(event),
                "liquidator": event.liquidator_id,
                "profitUSD": usd(event.profit_usd) if event.profit_usd is not None else None,
            }
            for event in top_k(
                liquidations, lambda e: (-e.amount_usd, e.event_id), LIQUIDATION_LIMIT
            )
        ],
    }


__all__ = [
    "LARGE_EVENT_THRESHOLD_USD",
    "RISK_UTILIZATION_THRESHOLD",
    "summarize_lending",
]
