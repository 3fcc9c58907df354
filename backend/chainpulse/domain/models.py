"""Typed domain representations shared by ingestion, summarization, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


class DomainType(str, Enum):
    DEX = "dex"
    LENDING = "lending"
    NFT = "nft"
    DERIVATIVES = "derivatives"


@dataclass(slots=True, frozen=True)
class Source:
    """One indexed, queryable dataset for a protocol on a network."""

    key: str
    subgraph_id: str
    display_name: str
    protocol: str
    network: str
    domain_type: DomainType

    @property
    def tag(self) -> "SourceTag":
        return SourceTag(
            protocol=self.protocol,
            network=self.network,
            source_name=self.display_name,
        )


@dataclass(slots=True, frozen=True)
class SourceTag:
    """Provenance attached to every record at fetch time."""

    protocol: str
    network: str
    source_name: str


@dataclass(slots=True)
class DexSwap:
    """Single swap on a DEX pool."""

    entity_type: ClassVar[str] = "swap"

    swap_id: str
    tag: SourceTag
    timestamp: int | None
    amount_usd: float
    amount0: float
    amount1: float
    sender: str | None
    recipient: str | None
    pool_id: str | None
    fee_tier: str | None
    token0_symbol: str | None
    token1_symbol: str | None
    raw_data: dict[str, Any] | None = None

    @property
    def pair(self) -> str:
        return f"{self.token0_symbol or 'TOKEN0'}/{self.token1_symbol or 'TOKEN1'}"

    @property
    def participant(self) -> str | None:
        return self.sender or self.recipient

    @property
    def is_token0_to_token1(self) -> bool:
        # Pool-perspective amounts: the token flowing in is positive.
        return self.amount0 >= 0


@dataclass(slots=True)
class LendingRate:
    side: str
    type: str
    rate: float


@dataclass(slots=True)
class LendingMarket:
    """Point-in-time lending market snapshot, re-fetched in full each run."""

    entity_type: ClassVar[str] = "market"

    market_id: str
    tag: SourceTag
    name: str | None
    token: str | None
    is_active: bool | None
    total_value_locked_usd: float
    total_deposits_usd: float
    total_borrows_usd: float
    cumulative_borrow_usd: float
    cumulative_liquidate_usd: float
    maximum_ltv: float | None
    liquidation_threshold: float | None
    rates: list[LendingRate] = field(default_factory=list)
    raw_data: dict[str, Any] | None = None

    def variable_rate(self, side: str) -> float | None:
        for rate in self.rates:
            if rate.side == side and rate.type == "VARIABLE":
                return rate.rate
        return None


@dataclass(slots=True)
class LendingEvent:
    """Borrow, deposit, or liquidation against a lending market."""

    event_id: str
    event_type: str
    tag: SourceTag
    timestamp: int | None
    amount: float
    amount_usd: float
    account_id: str | None
    market_id: str | None
    market_name: str | None
    asset_symbol: str | None
    liquidator_id: str | None = None
    profit_usd: float | None = None
    raw_data: dict[str, Any] | None = None

    @property
    def entity_type(self) -> str:
        return self.event_type


@dataclass(slots=True)
class NftEntity:
    """Flat NFT row; ``entity_type`` is one of project, transfer, token, mint."""

    entity_id: str
    entity_type: str
    tag: SourceTag
    project_id: str | None = None
    project_name: str | None = None
    artist_name: str | None = None
    invocations: int | None = None
    max_invocations: int | None = None
    price_per_token_wei: str | None = None
    currency_symbol: str | None = None
    currency_address: str | None = None
    currency_decimals: int | None = None
    active: bool | None = None
    complete: bool | None = None
    from_address: str | None = None
    to_address: str | None = None
    owner_address: str | None = None
    minter_address: str | None = None
    token_id: str | None = None
    transfer_count: int | None = None
    block_number: int | None = None
    block_timestamp: int | None = None
    transaction_hash: str | None = None
    raw_data: dict[str, Any] | None = None


@dataclass(slots=True)
class DerivativesEntity:
    """Flat perpetuals row; ``entity_type`` is swap, positionSnapshot, liquidation or position."""

    entry_id: str
    entity_type: str
    tag: SourceTag
    timestamp: int | None = None
    account_id: str | None = None
    asset_symbol: str | None = None
    position_id: str | None = None
    position_side: str | None = None
    hash: str | None = None
    token_in_symbol: str | None = None
    token_out_symbol: str | None = None
    amount_in_usd: float = 0.0
    amount_out_usd: float = 0.0
    balance: float = 0.0
    balance_usd: float = 0.0
    collateral_balance_usd: float = 0.0
    amount_usd: float = 0.0
    profit_usd: float = 0.0
    block_number: int | None = None
    raw_data: dict[str, Any] | None = None


@dataclass(slots=True)
class LendingBundle:
    """Markets and events fetched from one lending source."""

    markets: list[LendingMarket] = field(default_factory=list)
    events: list[LendingEvent] = field(default_factory=list)

    def events_of(self, event_type: str) -> list[LendingEvent]:
        return [event for event in self.events if event.event_type == event_type]

    @property
    def borrows(self) -> list[LendingEvent]:
        return self.events_of("borrow")

    @property
    def deposits(self) -> list[LendingEvent]:
        return self.events_of("deposit")

    @property
    def liquidations(self) -> list[LendingEvent]:
        return self.events_of("liquidation")

    def __len__(self) -> int:
        return len(self.markets) + len(self.events)


@dataclass(slots=True)
class FetchResult:
    """All records fetched in one run, grouped by domain then source key."""

    fetched_at: datetime
    window_start: int
    dex: dict[str, list[DexSwap]] = field(default_factory=dict)
    lending: dict[str, LendingBundle] = field(default_factory=dict)
    nft: dict[str, list[NftEntity]] = field(default_factory=dict)
    derivatives: dict[str, list[DerivativesEntity]] = field(default_factory=dict)
    failures: list[dict[str, str]] = field(default_factory=list)

    def swaps(self) -> list[DexSwap]:
        return [swap for rows in self.dex.values() for swap in rows]

    def lending_markets(self) -> list[LendingMarket]:
        return [market for bundle in self.lending.values() for market in bundle.markets]

    def lending_events(self) -> list[LendingEvent]:
        return [event for bundle in self.lending.values() for event in bundle.events]

    def nft_entities(self) -> list[NftEntity]:
        return [entity for rows in self.nft.values() for entity in rows]

    def derivatives_entities(self) -> list[DerivativesEntity]:
        return [entity for rows in self.derivatives.values() for entity in rows]

    def record_counts(self) -> dict[str, int]:
        return {
            DomainType.DEX.value: len(self.swaps()),
            DomainType.LENDING.value: len(self.lending_markets()) + len(self.lending_events()),
            DomainType.NFT.value: len(self.nft_entities()),
            DomainType.DERIVATIVES.value: len(self.derivatives_entities()),
        }
