"""Batched idempotent persistence for fetched on-chain records."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chainpulse.domain import (
    DerivativesEntity,
    DexSwap,
    FetchResult,
    LendingEvent,
    LendingMarket,
    NftEntity,
)
from chainpulse.models import (
    RAW_RECORD_MODELS,
    DerivativesEntityRecord,
    DexSwapRecord,
    LendingEventRecord,
    LendingMarketRecord,
    NftEntityRecord,
)

from .upsert import PersistenceError, chunked, dedupe_rows, upsert_statement

DEFAULT_BATCH_SIZE = 1000

DEX_SWAP_KEY = ("swap_id", "protocol", "network")
LENDING_MARKET_KEY = ("market_id", "protocol", "network")
LENDING_EVENT_KEY = ("event_id", "event_type", "protocol", "network")
NFT_ENTITY_KEY = ("entity_id", "entity_type", "protocol", "network", "fetched_at")
DERIVATIVES_ENTRY_KEY = ("entry_id", "entity_type", "protocol", "network", "fetched_at")


def _tags(record: Any, fetched_at: datetime) -> dict[str, Any]:
    return {
        "protocol": record.tag.protocol,
        "network": record.tag.network,
        "source_name": record.tag.source_name,
        "fetched_at": fetched_at,
        "raw_data": record.raw_data,
    }


def swap_row(swap: DexSwap, fetched_at: datetime) -> dict[str, Any]:
    return {
        **_tags(swap, fetched_at),
        "swap_id": swap.swap_id,
        "pool_id": swap.pool_id,
        "token0_symbol": swap.token0_symbol,
        "token1_symbol": swap.token1_symbol,
        "fee_tier": swap.fee_tier,
        "amount_usd": swap.amount_usd,
        "amount0": swap.amount0,
        "amount1": swap.amount1,
        "sender": swap.sender,
        "recipient": swap.recipient,
        "timestamp": swap.timestamp,
    }


def market_row(market: LendingMarket, fetched_at: datetime) -> dict[str, Any]:
    return {
        **_tags(market, fetched_at),
        "market_id": market.market_id,
        "name": market.name,
        "input_token_symbol": market.token,
        "is_active": market.is_active,
        "total_value_locked_usd": market.total_value_locked_usd,
        "total_deposit_balance_usd": market.total_deposits_usd,
        "total_borrow_balance_usd": market.total_borrows_usd,
        "cumulative_borrow_usd": market.cumulative_borrow_usd,
        "cumulative_liquidate_usd": market.cumulative_liquidate_usd,
        "maximum_ltv": market.maximum_ltv,
        "liquidation_threshold": market.liquidation_threshold,
        "rates": [asdict(rate) for rate in market.rates],
    }


def event_row(event: LendingEvent, fetched_at: datetime) -> dict[str, Any]:
    return {
        **_tags(event, fetched_at),
        "event_id": event.event_id,
        "event_type": event.event_type,
        "market_id": event.market_id,
        "market_name": event.market_name,
        "asset_symbol": event.asset_symbol,
        "amount": event.amount,
        "amount_usd": event.amount_usd,
        "account_id": event.account_id,
        "liquidator_id": event.liquidator_id,
        "profit_usd": event.profit_usd,
        "timestamp": event.timestamp,
    }


def nft_row(entity: NftEntity, fetched_at: datetime) -> dict[str, Any]:
    row = asdict(entity)
    row.pop("tag")
    return {**row, **_tags(entity, fetched_at)}


def derivatives_row(entry: DerivativesEntity, fetched_at: datetime) -> dict[str, Any]:
    row = asdict(entry)
    row.pop("tag")
    return {**row, **_tags(entry, fetched_at)}


class RawDataRepository:
    """Write fetched records in fixed-size batches keyed by their natural keys.

    Each batch is committed on its own. A failing batch is rolled back and
    raises :class:`PersistenceError`; batches committed before it stay written.
    """

    def __init__(self, session: Session, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._session = session
        self._batch_size = batch_size

    # ------------------------------------------------------------------
    # Mutations

    def upsert_swaps(self, swaps: Iterable[DexSwap], *, fetched_at: datetime) -> int:
        return self._upsert(DexSwapRecord, swaps, swap_row, DEX_SWAP_KEY, fetched_at)

    def upsert_lending_markets(
        self, markets: Iterable[LendingMarket], *, fetched_at: datetime
    ) -> int:
        return self._upsert(LendingMarketRecord, markets, market_row, LENDING_MARKET_KEY, fetched_at)

    def upsert_lending_events(
        self, events: Iterable[LendingEvent], *, fetched_at: datetime
    ) -> int:
        return self._upsert(LendingEventRecord, events, event_row, LENDING_EVENT_KEY, fetched_at)

    def upsert_nft_entities(self, entities: Iterable[NftEntity], *, fetched_at: datetime) -> int:
        return self._upsert(NftEntityRecord, entities, nft_row, NFT_ENTITY_KEY, fetched_at)

    def upsert_derivatives_entities(
        self, entries: Iterable[DerivativesEntity], *, fetched_at: datetime
    ) -> int:
        return self._upsert(
            DerivativesEntityRecord, entries, derivatives_row, DERIVATIVES_ENTRY_KEY, fetched_at
        )

    def save_fetch_result(self, result: FetchResult) -> dict[str, int]:
        """Persist every domain of ``result``; returns rows written per table."""

        fetched_at = result.fetched_at
        return {
            DexSwapRecord.__tablename__: self.upsert_swaps(result.swaps(), fetched_at=fetched_at),
            LendingMarketRecord.__tablename__: self.upsert_lending_markets(
                result.lending_markets(), fetched_at=fetched_at
            ),
            LendingEventRecord.__tablename__: self.upsert_lending_events(
                result.lending_events(), fetched_at=fetched_at
            ),
            NftEntityRecord.__tablename__: self.upsert_nft_entities(
                result.nft_entities(), fetched_at=fetched_at
            ),
            DerivativesEntityRecord.__tablename__: self.upsert_derivatives_entities(
                result.derivatives_entities(), fetched_at=fetched_at
            ),
        }

    def purge_raw_data(self, cutoff: datetime) -> dict[str, int]:
        """Delete raw rows fetched at or before ``cutoff``. Reports are never touched."""

        deleted: dict[str, int] = {}
        try:
            for model in RAW_RECORD_MODELS:
                outcome = self._session.execute(
                    delete(model).where(model.fetched_at <= cutoff)
                )
                deleted[model.__tablename__] = outcome.rowcount or 0
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise PersistenceError("raw tables", 0, str(exc)) from exc
        logger.info("Purged raw rows fetched at or before {}: {}", cutoff.isoformat(), deleted)
        return deleted

    # ------------------------------------------------------------------
    # Internal helpers

    def _upsert(
        self,
        model: type,
        records: Iterable[Any],
        to_row: Callable[[Any, datetime], dict[str, Any]],
        conflict_keys: Sequence[str],
        fetched_at: datetime,
    ) -> int:
        table = model.__tablename__
        rows = [to_row(record, fetched_at) for record in records]
        unique = dedupe_rows(rows, conflict_keys)
        if len(unique) < len(rows):
            logger.debug("Dropped {} duplicate rows for {}", len(rows) - len(unique), table)
        if not unique:
            return 0

        written = 0
        for index, batch in enumerate(chunked(unique, self._batch_size)):
            try:
                self._session.execute(upsert_statement(self._session, model, batch, conflict_keys))
                self._session.commit()
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error(
                    "Batch {} for {} failed after {} rows were committed", index, table, written
                )
                raise PersistenceError(table, index, str(exc)) from exc
            written += len(batch)
        logger.info("Upserted {} rows into {}", written, table)
        return written


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "RawDataRepository",
    "derivatives_row",
    "event_row",
    "market_row",
    "nft_row",
    "swap_row",
]
