from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# sqlite only autoincrements INTEGER PRIMARY KEY columns.
_PK = BigInteger().with_variant(Integer, "sqlite")
_USD = Numeric(38, 8)
_TOKEN_AMOUNT = Numeric(78, 18)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DexSwapRecord(Base):
    __tablename__ = "graph_dex_swaps"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    swap_id: Mapped[str] = mapped_column(String, nullable=False)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String, nullable=True)
    pool_id: Mapped[str | None] = mapped_column(String, nullable=True)
    token0_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    token1_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    fee_tier: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    amount0: Mapped[float | None] = mapped_column(_TOKEN_AMOUNT, nullable=True)
    amount1: Mapped[float | None] = mapped_column(_TOKEN_AMOUNT, nullable=True)
    sender: Mapped[str | None] = mapped_column(String, nullable=True)
    recipient: Mapped[str | None] = mapped_column(String, nullable=True)
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("swap_id", "protocol", "network", name="uq_dex_swap_key"),
    )


class LendingMarketRecord(Base):
    __tablename__ = "graph_lending_markets"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    market_id: Mapped[str] = mapped_column(String, nullable=False)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    input_token_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    total_value_locked_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    total_deposit_balance_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    total_borrow_balance_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    cumulative_borrow_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    cumulative_liquidate_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    maximum_ltv: Mapped[float | None] = mapped_column(Numeric(18, 6), nullable=True)
    liquidation_threshold: Mapped[float | None] = mapped_column(Numeric(18, 6), nullable=True)
    rates: Mapped[list | None] = mapped_column(JSON, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("market_id", "protocol", "network", name="uq_lending_market_key"),
    )


class LendingEventRecord(Base):
    __tablename__ = "graph_lending_events"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String, nullable=True)
    market_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market_name: Mapped[str | None] = mapped_column(String, nullable=True)
    asset_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[float | None] = mapped_column(_TOKEN_AMOUNT, nullable=True)
    amount_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    liquidator_id: Mapped[str | None] = mapped_column(String, nullable=True)
    profit_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "event_id", "event_type", "protocol", "network", name="uq_lending_event_key"
        ),
    )


class NftEntityRecord(Base):
    __tablename__ = "graph_nft_data"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String, nullable=True)
    project_id: Mapped[str | None] = mapped_column(String, nullable=True)
    project_name: Mapped[str | None] = mapped_column(String, nullable=True)
    artist_name: Mapped[str | None] = mapped_column(String, nullable=True)
    invocations: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_invocations: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    price_per_token_wei: Mapped[str | None] = mapped_column(String, nullable=True)
    currency_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    currency_address: Mapped[str | None] = mapped_column(String, nullable=True)
    currency_decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    complete: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    from_address: Mapped[str | None] = mapped_column(String, nullable=True)
    to_address: Mapped[str | None] = mapped_column(String, nullable=True)
    owner_address: Mapped[str | None] = mapped_column(String, nullable=True)
    minter_address: Mapped[str | None] = mapped_column(String, nullable=True)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True)
    transfer_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    block_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "entity_type",
            "protocol",
            "network",
            "fetched_at",
            name="uq_nft_entity_key",
        ),
    )


class DerivativesEntityRecord(Base):
    __tablename__ = "graph_derivatives_data"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    network: Mapped[str] = mapped_column(String, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    asset_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    position_id: Mapped[str | None] = mapped_column(String, nullable=True)
    position_side: Mapped[str | None] = mapped_column(String(16), nullable=True)
    hash: Mapped[str | None] = mapped_column(String, nullable=True)
    token_in_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    token_out_symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_in_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    amount_out_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    balance: Mapped[float | None] = mapped_column(_TOKEN_AMOUNT, nullable=True)
    balance_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    collateral_balance_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    amount_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    profit_usd: Mapped[float | None] = mapped_column(_USD, nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "entry_id",
            "entity_type",
            "protocol",
            "network",
            "fetched_at",
            name="uq_derivatives_entry_key",
        ),
    )


class ReportRecord(Base):
    __tablename__ = "graph_reports"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    report_content: Mapped[dict] = mapped_column(JSON, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    model_used: Mapped[str | None] = mapped_column(String, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("report_date", "source", name="uq_report_date_source"),
    )


RAW_RECORD_MODELS: tuple[type[Base], ...] = (
    DexSwapRecord,
    LendingMarketRecord,
    LendingEventRecord,
    NftEntityRecord,
    DerivativesEntityRecord,
)
