from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from chainpulse.domain import (
    DerivativesEntity,
    DexSwap,
    FetchResult,
    LendingBundle,
    LendingEvent,
    LendingMarket,
    NftEntity,
    SourceTag,
)
from chainpulse.models import (
    DerivativesEntityRecord,
    DexSwapRecord,
    LendingEventRecord,
    LendingMarketRecord,
    NftEntityRecord,
    ReportRecord,
)
from chainpulse.repositories import RawDataRepository, ReportRepository
from chainpulse.repositories.upsert import PersistenceError, chunked, dedupe_rows

FETCHED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _swap(swap_id: str, amount_usd: float, tag: SourceTag) -> DexSwap:
    return DexSwap(
        swap_id=swap_id,
        tag=tag,
        timestamp=1714550400,
        amount_usd=amount_usd,
        amount0=1.0,
        amount1=-2000.0,
        sender="0xtrader",
        recipient="0xtrader",
        pool_id="0xpool",
        fee_tier="500",
        token0_symbol="WETH",
        token1_symbol="USDC",
        raw_data={"id": swap_id},
    )


def _fetch_result(dex_tag: SourceTag, lending_tag: SourceTag, fetched_at: datetime = FETCHED_AT) -> FetchResult:
    market = LendingMarket(
        market_id="usdc",
        tag=lending_tag,
        name="Aave USDC",
        token="USDC",
        is_active=True,
        total_value_locked_usd=10.0,
        total_deposits_usd=10.0,
        total_borrows_usd=5.0,
        cumulative_borrow_usd=0.0,
        cumulative_liquidate_usd=0.0,
        maximum_ltv=None,
        liquidation_threshold=80.0,
    )
    borrow = LendingEvent(
        event_id="b1",
        event_type="borrow",
        tag=lending_tag,
        timestamp=1714550400,
        amount=1.0,
        amount_usd=1.0,
        account_id="0xa",
        market_id="usdc",
        market_name="Aave USDC",
        asset_symbol="USDC",
    )
    nft_tag = SourceTag(protocol="art-blocks", network="mainnet", source_name="Art Blocks")
    perp_tag = SourceTag(protocol="gmx", network="arbitrum", source_name="GMX")
    return FetchResult(
        fetched_at=fetched_at,
        window_start=0,
        dex={"uni": [_swap("s1", 100.0, dex_tag), _swap("s2", 200.0, dex_tag)]},
        lending={"aave": LendingBundle(markets=[market], events=[borrow])},
        nft={"ab": [NftEntity(entity_id="t1", entity_type="transfer", tag=nft_tag, token_id="7")]},
        derivatives={
            "gmx": [DerivativesEntity(entry_id="p1", entity_type="position", tag=perp_tag, position_side="long")]
        },
    )


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_dedupe_rows_and_chunked():
    rows = [{"id": 1, "v": "a"}, {"id": 1, "v": "b"}, {"id": 2, "v": "c"}]

    assert dedupe_rows(rows, ("id",)) == [{"id": 1, "v": "a"}, {"id": 2, "v": "c"}]
    assert [list(batch) for batch in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_upsert_swaps_is_idempotent(session_factory, dex_tag):
    """Verify re-running the same batch leaves one row per natural key with new values."""

    with session_factory() as session:
        repo = RawDataRepository(session, batch_size=1)
        assert repo.upsert_swaps([_swap("s1", 100.0, dex_tag), _swap("s2", 5.0, dex_tag)], fetched_at=FETCHED_AT) == 2
        assert repo.upsert_swaps([_swap("s1", 150.0, dex_tag)], fetched_at=FETCHED_AT) == 1

        assert _count(session, DexSwapRecord) == 2
        record = session.execute(
            select(DexSwapRecord).where(DexSwapRecord.swap_id == "s1")
        ).scalar_one()
        assert float(record.amount_usd) == pytest.approx(150.0)
        assert record.source_name == dex_tag.source_name
        assert record.raw_data == {"id": "s1"}


def test_upsert_drops_in_batch_duplicates(session_factory, dex_tag):
    with session_factory() as session:
        repo = RawDataRepository(session)
        written = repo.upsert_swaps(
            [_swap("s1", 100.0, dex_tag), _swap("s1", 100.0, dex_tag)], fetched_at=FETCHED_AT
        )

        assert written == 1
        assert _count(session, DexSwapRecord) == 1


def test_same_id_on_other_network_is_distinct(session_factory, dex_tag):
    other = SourceTag(protocol=dex_tag.protocol, network="base", source_name="Uniswap V3 Base")

    with session_factory() as session:
        RawDataRepository(session).upsert_swaps(
            [_swap("s1", 1.0, dex_tag), _swap("s1", 1.0, other)], fetched_at=FETCHED_AT
        )

        assert _count(session, DexSwapRecord) == 2


def test_save_fetch_result_writes_every_domain(session_factory, dex_tag, lending_tag):
    """Verify each domain lands in its own table and counts are reported per table."""

    with session_factory() as session:
        repo = RawDataRepository(session)
        written = repo.save_fetch_result(_fetch_result(dex_tag, lending_tag))

        assert written == {
            "graph_dex_swaps": 2,
            "graph_lending_markets": 1,
            "graph_lending_events": 1,
            "graph_nft_data": 1,
            "graph_derivatives_data": 1,
        }
        assert _count(session, LendingMarketRecord) == 1
        assert _count(session, NftEntityRecord) == 1

        again = repo.save_fetch_result(_fetch_result(dex_tag, lending_tag))
        assert again == written
        assert _count(session, LendingEventRecord) == 1
        assert _count(session, DerivativesEntityRecord) == 1


def test_snapshot_tables_keep_each_fetch(session_factory, dex_tag, lending_tag):
    """Verify NFT and derivatives rows from different fetches are kept side by side."""

    with session_factory() as session:
        repo = RawDataRepository(session)
        repo.save_fetch_result(_fetch_result(dex_tag, lending_tag))
        repo.save_fetch_result(
            _fetch_result(dex_tag, lending_tag, fetched_at=FETCHED_AT + timedelta(hours=1))
        )

        assert _count(session, NftEntityRecord) == 2
        assert _count(session, DerivativesEntityRecord) == 2
        assert _count(session, DexSwapRecord) == 2


def test_purge_removes_old_raw_rows_only(session_factory, dex_tag, lending_tag):
    """Verify cleanup deletes raw rows at or before the cutoff and keeps reports."""

    with session_factory() as session:
        RawDataRepository(session).save_fetch_result(_fetch_result(dex_tag, lending_tag))
        ReportRepository(session).upsert_report(
            report_date=date(2024, 5, 1),
            source="graph",
            content={"report": "# Report"},
            generated_at=FETCHED_AT,
            model_used="gpt-4o",
            tokens_used=10,
        )

        kept = RawDataRepository(session).purge_raw_data(FETCHED_AT - timedelta(hours=1))
        assert sum(kept.values()) == 0
        assert _count(session, DexSwapRecord) == 2

        deleted = RawDataRepository(session).purge_raw_data(FETCHED_AT)
        assert deleted["graph_dex_swaps"] == 2
        assert deleted["graph_nft_data"] == 1
        assert _count(session, DexSwapRecord) == 0
        assert _count(session, ReportRecord) == 1


def test_report_upsert_replaces_same_day(session_factory):
    """Verify a second report for the same date and source overwrites the first."""

    with session_factory() as session:
        repo = ReportRepository(session)
        repo.upsert_report(
            report_date=date(2024, 5, 1),
            source="graph",
            content={"report": "first"},
            generated_at=FETCHED_AT,
            model_used="gpt-4o",
            tokens_used=10,
        )
        record = repo.upsert_report(
            report_date=date(2024, 5, 1),
            source="graph",
            content={"report": "second"},
            generated_at=FETCHED_AT + timedelta(hours=2),
            model_used="gpt-4o-mini",
            tokens_used=20,
        )

        assert record.report_content == {"report": "second"}
        assert record.model_used == "gpt-4o-mini"
        assert _count(session, ReportRecord) == 1


def test_report_lookup_by_date_and_latest(session_factory):
    with session_factory() as session:
        repo = ReportRepository(session)
        for day, source in ((1, "graph"), (2, "graph"), (3, "other")):
            repo.upsert_report(
                report_date=date(2024, 5, day),
                source=source,
                content={"report": f"day {day}"},
                generated_at=FETCHED_AT + timedelta(days=day),
                model_used="gpt-4o",
                tokens_used=None,
            )

        assert repo.get(date(2024, 5, 1), "graph").report_content == {"report": "day 1"}
        assert repo.get(date(2024, 5, 3), "graph") is None
        assert repo.latest("graph").report_date == date(2024, 5, 2)
        assert repo.latest("missing") is None


def test_failed_batch_stops_and_keeps_earlier_batches(session_factory, dex_tag):
    """Verify a failing batch raises with its index and earlier batches stay committed."""

    swaps = [_swap(f"s{index}", 10.0, dex_tag) for index in range(6)]
    swaps[3].raw_data = {"unserializable": object()}

    with session_factory() as session:
        repo = RawDataRepository(session, batch_size=2)
        with pytest.raises(PersistenceError) as excinfo:
            repo.upsert_swaps(swaps, fetched_at=FETCHED_AT)

        assert excinfo.value.batch_index == 1
        assert excinfo.value.table == DexSwapRecord.__tablename__
        stored = session.execute(select(DexSwapRecord.swap_id).order_by(DexSwapRecord.swap_id)).scalars().all()
        assert stored == ["s0", "s1"]


def test_repository_rejects_bad_batch_size(session_factory):
    with session_factory() as session, pytest.raises(ValueError):
        RawDataRepository(session, batch_size=0)
