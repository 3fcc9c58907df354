from __future__ import annotations

from chainpulse.domain import DexSwap, LendingEvent, LendingMarket, SourceTag
from pipelines.summaries import summarize_cross_protocol, summarize_dex, summarize_lending

DEX_TAG = SourceTag(protocol="uniswap-v3", network="mainnet", source_name="Uniswap V3 Mainnet")
LENDING_TAG = SourceTag(protocol="aave-v3", network="base", source_name="Aave V3 Base")
HOUR = 1714550400


def _swap(swap_id: str, amount_usd: float, token0: str, token1: str, *, sender: str = "0xloop") -> DexSwap:
    return DexSwap(
        swap_id=swap_id,
        tag=DEX_TAG,
        timestamp=HOUR + 60,
        amount_usd=amount_usd,
        amount0=1.0,
        amount1=-1.0,
        sender=sender,
        recipient=None,
        pool_id=f"{token0}-{token1}",
        fee_tier="3000",
        token0_symbol=token0,
        token1_symbol=token1,
    )


def _borrow(event_id: str, amount_usd: float, account: str) -> LendingEvent:
    return LendingEvent(
        event_id=event_id,
        event_type="borrow",
        tag=LENDING_TAG,
        timestamp=HOUR + 120,
        amount=amount_usd,
        amount_usd=amount_usd,
        account_id=account,
        market_id="weth-market",
        market_name="Aave WETH",
        asset_symbol="WETH",
    )


def _market() -> LendingMarket:
    return LendingMarket(
        market_id="weth-market",
        tag=LENDING_TAG,
        name="Aave WETH",
        token="WETH",
        is_active=True,
        total_value_locked_usd=2_000_000.0,
        total_deposits_usd=2_000_000.0,
        total_borrows_usd=900_000.0,
        cumulative_borrow_usd=0.0,
        cumulative_liquidate_usd=0.0,
        maximum_ltv=None,
        liquidation_threshold=None,
    )


def _summaries():
    swaps = [
        _swap("s1", 60_000.0, "WETH", "USDC"),
        _swap("s2", 40_000.0, "WBTC", "WETH", sender="0xother"),
        _swap("s3", 0.0, "WETH", "USDC"),
    ]
    borrows = [_borrow("b1", 25_000.0, "0xLOOP"), _borrow("b2", 25_000.0, "0xlender")]
    dex_summary = summarize_dex(swaps)
    lending_summary = summarize_lending([_market()], borrows)
    return summarize_cross_protocol(swaps, borrows, dex_summary, lending_summary)


def test_cross_overview_ratios():
    """Verify stablecoin share and volume/borrow ratio come from the per-domain digests."""

    overview = _summaries()["overview"]

    assert overview["totalSwapVolumeUSD"] == 100000.0
    assert overview["windowBorrowVolumeUSD"] == 50000.0
    assert overview["stablecoinVolumeUSD"] == 60000.0
    assert overview["stablecoinVolumeShare"] == 0.6
    assert overview["volumeToBorrowRatio"] == 2.0
    assert overview["overlappingActorCount"] == 1


def test_cross_overlapping_actors_match_case_insensitively():
    """Verify zero-value swaps still count toward an actor's swap total."""

    summary = _summaries()

    assert summary["overlappingActors"] == [
        {"address": "0xloop", "swapCount": 2, "borrowUSD": 25000.0}
    ]
    assert summary["stablecoinPairs"] == [{"pair": "WETH/USDC", "volumeUSD": 60000.0}]


def test_leverage_loops_are_flagged_as_heuristic():
    """Verify loop candidates carry the heuristic flag and explanatory note."""

    loops = _summaries()["leverageLoops"]

    assert {loop["pair"] for loop in loops} == {"WETH/USDC", "WBTC/WETH"}
    for loop in loops:
        assert loop["heuristic"] is True
        assert loop["marketToken"] == "WETH"
        assert "not evidence" in loop["inference"]


def test_hourly_series_combines_swaps_and_borrows():
    hours = _summaries()["volumeVsBorrowByHour"]

    assert hours == [
        {"hour": "2024-05-01T08:00:00Z", "swapVolumeUSD": 100000.0, "borrowVolumeUSD": 50000.0}
    ]


def test_cross_without_borrows():
    swaps = [_swap("s1", 1_000.0, "DAI", "USDC")]

    summary = summarize_cross_protocol(swaps, [], summarize_dex(swaps), summarize_lending([], []))

    assert summary["overview"]["volumeToBorrowRatio"] == 0.0
    assert summary["overview"]["stablecoinVolumeShare"] == 1.0
    assert summary["leverageLoops"] == []


def test_hourly_series_skips_missing_timestamps():
    swap = _swap("s1", 5_000.0, "WETH", "USDC")
    swap.timestamp = 0
    borrow = _borrow("b1", 1_000.0, "0xloop")
    borrow.timestamp = None
    late = _borrow("b2", 2_000.0, "0xloop")

    summary = summarize_cross_protocol(
        [swap], [borrow, late], summarize_dex([swap]), summarize_lending([], [borrow, late])
    )

    assert summary["volumeVsBorrowByHour"] == [
        {"hour": "2024-05-01T08:00:00Z", "swapVolumeUSD": 0.0, "borrowVolumeUSD": 2000.0}
    ]
    assert summary["overlappingActors"] == [
        {"address": "0xloop", "swapCount": 1, "borrowUSD": 3000.0}
    ]
