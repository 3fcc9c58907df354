from __future__ import annotations

import math
from typing import Any, Callable, TypeVar

from chainpulse.domain import (
    DerivativesEntity,
    DexSwap,
    LendingEvent,
    LendingMarket,
    LendingRate,
    NftEntity,
    SourceTag,
)

T = TypeVar("T")
Normalizer = Callable[[dict[str, Any], SourceTag], Any]

_NORMALIZERS: dict[tuple[str, str | None, str], Normalizer] = {}


def to_number(value: Any) -> float:
    """Coerce subgraph numerics (often strings) to float; non-finite values become 0."""

    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return to_number(value)


def _parse_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _nested(raw: dict[str, Any], *path: str) -> Any:
    current: Any = raw
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _lower(value: Any) -> str | None:
    text = _text(value)
    return text.lower() if text else None


def register_normalizer(
    domain: str, entity_type: str, *, protocol: str | None = None
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Register a normalizer for a domain entity type; ``protocol`` narrows it to one source family."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        _NORMALIZERS[(domain, protocol, entity_type)] = func
        return func

    return decorator


def normalize_record(
    domain: str, entity_type: str, raw: dict[str, Any], tag: SourceTag
) -> Any:
    normalizer = _NORMALIZERS.get((domain, tag.protocol, entity_type)) or _NORMALIZERS.get(
        (domain, None, entity_type)
    )
    if normalizer is None:
        raise KeyError(f"No normalizer registered for {domain} entity type {entity_type!r}")
    return normalizer(raw, tag)


def normalize_records(
    domain: str, entity_type: str, rows: list[dict[str, Any]], tag: SourceTag
) -> list[Any]:
    return [normalize_record(domain, entity_type, row, tag) for row in rows]


# ----------------------------------------------------------------------
# DEX


@register_normalizer("dex", "swap")
def normalize_dex_swap(raw: dict[str, Any], tag: SourceTag) -> DexSwap:
    token0_symbol = _text(_nested(raw, "pool", "token0", "symbol")) or _text(
        _nested(raw, "token0", "symbol")
    )
    token1_symbol = _text(_nested(raw, "pool", "token1", "symbol")) or _text(
        _nested(raw, "token1", "symbol")
    )
    return DexSwap(
        swap_id=str(raw.get("id")),
        tag=tag,
        timestamp=_parse_int(raw.get("timestamp")),
        amount_usd=to_number(raw.get("amountUSD")),
        amount0=to_number(raw.get("amount0")),
        amount1=to_number(raw.get("amount1")),
        sender=_lower(raw.get("sender")),
        recipient=_lower(raw.get("recipient")),
        pool_id=_text(_nested(raw, "pool", "id")),
        fee_tier=_text(_nested(raw, "pool", "feeTier")),
        token0_symbol=token0_symbol,
        token1_symbol=token1_symbol,
        raw_data=raw,
    )


# ----------------------------------------------------------------------
# Lending


@register_normalizer("lending", "market")
def normalize_lending_market(raw: dict[str, Any], tag: SourceTag) -> LendingMarket:
    rates: list[LendingRate] = []
    for rate in raw.get("rates") or []:
        if not isinstance(rate, dict):
            continue
        rates.append(
            LendingRate(
                side=str(rate.get("side") or "").upper(),
                type=str(rate.get("type") or "").upper(),
                rate=to_number(rate.get("rate")),
            )
        )
    return LendingMarket(
        market_id=str(raw.get("id")),
        tag=tag,
        name=_text(raw.get("name")),
        token=_text(_nested(raw, "inputToken", "symbol")),
        is_active=raw.get("isActive") if isinstance(raw.get("isActive"), bool) else None,
        total_value_locked_usd=to_number(raw.get("totalValueLockedUSD")),
        total_deposits_usd=to_number(raw.get("totalDepositBalanceUSD")),
        total_borrows_usd=to_number(raw.get("totalBorrowBalanceUSD")),
        cumulative_borrow_usd=to_number(raw.get("cumulativeBorrowUSD")),
        cumulative_liquidate_usd=to_number(raw.get("cumulativeLiquidateUSD")),
        maximum_ltv=_optional_float(raw.get("maximumLTV")),
        liquidation_threshold=_optional_float(raw.get("liquidationThreshold")),
        rates=rates,
        raw_data=raw,
    )


def _lending_event(raw: dict[str, Any], tag: SourceTag, event_type: str) -> LendingEvent:
    # Reduced query shapes omit the relations; those fields stay None.
    return LendingEvent(
        event_id=str(raw.get("id")),
        event_type=event_type,
        tag=tag,
        timestamp=_parse_int(raw.get("timestamp")),
        amount=to_number(raw.get("amount")),
        amount_usd=to_number(raw.get("amountUSD")),
        account_id=_lower(_nested(raw, "account", "id") or _nested(raw, "liquidatee", "id")),
        market_id=_text(_nested(raw, "market", "id")),
        market_name=_text(_nested(raw, "market", "name")),
        asset_symbol=_text(_nested(raw, "asset", "symbol")),
        liquidator_id=_lower(_nested(raw, "liquidator", "id")),
        profit_usd=_optional_float(raw.get("profitUSD")),
        raw_data=raw,
    )


@register_normalizer("lending", "borrow")
def normalize_borrow(raw: dict[str, Any], tag: SourceTag) -> LendingEvent:
    return _lending_event(raw, tag, "borrow")


@register_normalizer("lending", "deposit")
def normalize_deposit(raw: dict[str, Any], tag: SourceTag) -> LendingEvent:
    return _lending_event(raw, tag, "deposit")


@register_normalizer("lending", "liquidation")
def normalize_lending_liquidation(raw: dict[str, Any], tag: SourceTag) -> LendingEvent:
    return _lending_event(raw, tag, "liquidation")


# ----------------------------------------------------------------------
# NFT


def _nft_project_fields(project: Any) -> dict[str, Any]:
    if not isinstance(project, dict):
        return {}
    return {
        "project_id": _text(project.get("id")) or _text(project.get("projectId")),
        "project_name": _text(project.get("name")),
    }


@register_normalizer("nft", "project")
def normalize_nft_project(raw: dict[str, Any], tag: SourceTag) -> NftEntity:
    return NftEntity(
        entity_id=str(raw.get("id")),
        entity_type="project",
        tag=tag,
        project_id=_text(raw.get("id")) or _text(raw.get("projectId")),
        project_name=_text(raw.get("name")),
        artist_name=_text(raw.get("artistName")),
        invocations=_parse_int(raw.get("invocations")),
        max_invocations=_parse_int(raw.get("maxInvocations")),
        price_per_token_wei=_text(raw.get("pricePerTokenInWei")),
        currency_symbol=_text(raw.get("currencySymbol")),
        currency_address=_lower(raw.get("currencyAddress")),
        active=raw.get("active") if isinstance(raw.get("active"), bool) else None,
        complete=raw.get("complete") if isinstance(raw.get("complete"), bool) else None,
        block_timestamp=_parse_int(raw.get("updatedAt")),
        raw_data=raw,
    )


@register_normalizer("nft", "transfer")
def normalize_nft_transfer(raw: dict[str, Any], tag: SourceTag) -> NftEntity:
    return NftEntity(
        entity_id=str(raw.get("id")),
        entity_type="transfer",
        tag=tag,
        from_address=_lower(raw.get("from")),
        to_address=_lower(raw.get("to")),
        token_id=_text(_nested(raw, "token", "tokenId")) or _text(_nested(raw, "token", "id")),
        block_number=_parse_int(raw.get("blockNumber")),
        block_timestamp=_parse_int(raw.get("blockTimestamp")),
        transaction_hash=_text(raw.get("transactionHash")),
        raw_data=raw,
        **_nft_project_fields(_nested(raw, "token", "project")),
    )


@register_normalizer("nft", "token")
def normalize_nft_token(raw: dict[str, Any], tag: SourceTag) -> NftEntity:
    transfers = raw.get("transfers")
    return NftEntity(
        entity_id=str(raw.get("id")),
        entity_type="token",
        tag=tag,
        token_id=_text(raw.get("tokenId")) or _text(raw.get("id")),
        owner_address=_lower(_nested(raw, "owner", "id")),
        transfer_count=len(transfers) if isinstance(transfers, list) else 0,
        invocations=_parse_int(_nested(raw, "project", "invocations")),
        block_timestamp=_parse_int(raw.get("updatedAt") or raw.get("createdAt")),
        transaction_hash=_text(raw.get("transactionHash")),
        raw_data=raw,
        **_nft_project_fields(raw.get("project")),
    )


@register_normalizer("nft", "mint")
def normalize_nft_mint(raw: dict[str, Any], tag: SourceTag) -> NftEntity:
    return NftEntity(
        entity_id=str(raw.get("id")),
        entity_type="mint",
        tag=tag,
        token_id=_text(_nested(raw, "token", "tokenId")) or _text(_nested(raw, "token", "id")),
        minter_address=_lower(raw.get("minterAddress")),
        transaction_hash=_text(raw.get("transactionHash")),
        currency_address=_lower(raw.get("currencyAddress")),
        currency_symbol=_text(raw.get("currencySymbol")),
        currency_decimals=_parse_int(raw.get("currencyDecimals")),
        block_timestamp=_parse_int(_nested(raw, "token", "createdAt")),
        raw_data=raw,
        **_nft_project_fields(_nested(raw, "token", "project")),
    )


# ----------------------------------------------------------------------
# Derivatives


def _side(value: Any) -> str | None:
    text = _lower(value)
    if text in {"long", "short"}:
        return text
    return None


@register_normalizer("derivatives", "swap")
def normalize_derivatives_swap(raw: dict[str, Any], tag: SourceTag) -> DerivativesEntity:
    return DerivativesEntity(
        entry_id=str(raw.get("id")),
        entity_type="swap",
        tag=tag,
        timestamp=_parse_int(raw.get("timestamp")),
        account_id=_lower(_nested(raw, "account", "id")),
        hash=_text(raw.get("hash")),
        token_in_symbol=_text(_nested(raw, "tokenIn", "symbol")),
        token_out_symbol=_text(_nested(raw, "tokenOut", "symbol")),
        amount_in_usd=to_number(raw.get("amountInUSD")),
        amount_out_usd=to_number(raw.get("amountOutUSD")),
        block_number=_parse_int(raw.get("blockNumber")),
        raw_data=raw,
    )


@register_normalizer("derivatives", "positionSnapshot")
def normalize_position_snapshot(raw: dict[str, Any], tag: SourceTag) -> DerivativesEntity:
    return DerivativesEntity(
        entry_id=str(raw.get("id")),
        entity_type="positionSnapshot",
        tag=tag,
        timestamp=_parse_int(raw.get("timestamp")),
        account_id=_lower(_nested(raw, "account", "id")),
        asset_symbol=_text(_nested(raw, "position", "asset", "symbol")),
        position_id=_text(_nested(raw, "position", "id")),
        position_side=_side(_nested(raw, "position", "side")),
        hash=_text(raw.get("hash")),
        balance=to_number(raw.get("balance")),
        balance_usd=to_number(raw.get("balanceUSD")),
        collateral_balance_usd=to_number(raw.get("collateralBalanceUSD")),
        block_number=_parse_int(raw.get("blockNumber")),
        raw_data=raw,
    )


@register_normalizer("derivatives", "liquidation")
def normalize_derivatives_liquidation(
    raw: dict[str, Any], tag: SourceTag
) -> DerivativesEntity:
    return DerivativesEntity(
        entry_id=str(raw.get("id")),
        entity_type="liquidation",
        tag=tag,
        timestamp=_parse_int(raw.get("timestamp")),
        account_id=_lower(_nested(raw, "liquidatee", "id") or _nested(raw, "account", "id")),
        asset_symbol=_text(_nested(raw, "asset", "symbol")),
        position_id=_text(_nested(raw, "position", "id")),
        position_side=_side(_nested(raw, "position", "side")),
        hash=_text(raw.get("hash")),
        balance=to_number(raw.get("amount")),
        amount_usd=to_number(raw.get("amountUSD")),
        profit_usd=to_number(raw.get("profitUSD")),
        block_number=_parse_int(raw.get("blockNumber")),
        raw_data=raw,
    )


@register_normalizer("derivatives", "position")
def normalize_position(raw: dict[str, Any], tag: SourceTag) -> DerivativesEntity:
    return DerivativesEntity(
        entry_id=str(raw.get("id")),
        entity_type="position",
        tag=tag,
        timestamp=_parse_int(raw.get("timestampOpened")),
        account_id=_lower(_nested(raw, "account", "id")),
        asset_symbol=_text(_nested(raw, "asset", "symbol")),
        position_id=_text(raw.get("id")),
        position_side=_side(raw.get("side")),
        balance=to_number(raw.get("balance")),
        balance_usd=to_number(raw.get("balanceUSD")),
        collateral_balance_usd=to_number(raw.get("collateralBalanceUSD")),
        block_number=_parse_int(raw.get("blockNumberOpened")),
        raw_data=raw,
    )


__all__ = [
    "normalize_dex_swap",
    "normalize_lending_market",
    "normalize_record",
    "normalize_records",
    "register_normalizer",
    "to_number",
]
