"""GraphQL query text for each domain's entity types."""

from __future__ import annotations

from typing import Mapping


DEX_SWAP_FIELDS = """
    id
    timestamp
    amount0
    amount1
    amountUSD
    sender
    recipient
    sqrtPriceX96
    tick
    pool {
      id
      feeTier
      token0 { id symbol name decimals }
      token1 { id symbol name decimals }
    }
    token0 { id symbol name decimals }
    token1 { id symbol name decimals }
"""

LENDING_MARKET_FIELDS = """
    id
    name
    isActive
    canBorrowFrom
    canUseAsCollateral
    maximumLTV
    liquidationThreshold
    liquidationPenalty
    totalValueLockedUSD
    totalDepositBalanceUSD
    totalBorrowBalanceUSD
    cumulativeBorrowUSD
    cumulativeLiquidateUSD
    inputToken { id symbol name }
    rates { side type rate }
"""

LENDING_EVENT_FIELDS = """
    id
    hash
    timestamp
    amount
    amountUSD
    account { id }
    market { id name }
    asset { id symbol name }
"""

# Some lending deployments do not expose the account/market/asset relations.
LENDING_EVENT_FIELDS_REDUCED = """
    id
    hash
    timestamp
    amount
    amountUSD
"""

LENDING_LIQUIDATION_FIELDS = """
    id
    hash
    timestamp
    amount
    amountUSD
    profitUSD
    liquidator { id }
    liquidatee { id }
    market { id name }
    asset { id symbol name }
"""

LENDING_LIQUIDATION_FIELDS_REDUCED = """
    id
    hash
    timestamp
    amount
    amountUSD
    profitUSD
"""

NFT_PROJECT_FIELDS = """
    id
    projectId
    name
    artistName
    invocations
    maxInvocations
    pricePerTokenInWei
    currencySymbol
    currencyAddress
    active
    complete
    updatedAt
"""

NFT_TRANSFER_FIELDS = """
    id
    from
    to
    blockNumber
    blockTimestamp
    transactionHash
    token { id tokenId project { id projectId name } }
"""

NFT_TOKEN_FIELDS = """
    id
    tokenId
    owner { id }
    createdAt
    updatedAt
    transactionHash
    project { id projectId name invocations }
    transfers(first: 100) { id }
"""

NFT_MINT_FIELDS = """
    id
    minterAddress
    transactionHash
    currencyAddress
    currencySymbol
    currencyDecimals
    token { id tokenId createdAt project { id projectId name } }
"""

DERIVATIVES_SWAP_FIELDS = """
    id
    hash
    timestamp
    blockNumber
    account { id }
    tokenIn { symbol }
    tokenOut { symbol }
    amountInUSD
    amountOutUSD
"""

DERIVATIVES_POSITION_SNAPSHOT_FIELDS = """
    id
    hash
    timestamp
    blockNumber
    account { id }
    position { id side asset { symbol } }
    balance
    balanceUSD
    collateralBalanceUSD
"""

DERIVATIVES_LIQUIDATION_FIELDS = """
    id
    hash
    timestamp
    blockNumber
    account { id }
    liquidatee { id }
    asset { symbol }
    position { id side }
    amount
    amountUSD
    profitUSD
"""

DERIVATIVES_POSITION_FIELDS = """
    id
    account { id }
    asset { symbol }
    side
    balance
    balanceUSD
    collateralBalanceUSD
    timestampOpened
    blockNumberOpened
"""


def _format_where(where: Mapping[str, object]) -> str:
    clauses = ", ".join(f"{key}: {value}" for key, value in where.items())
    return "{ " + clauses + " }"


def collection_query(
    entity: str,
    fields: str,
    *,
    first: int,
    skip: int = 0,
    order_by: str | None = "timestamp",
    order_direction: str = "desc",
    where: Mapping[str, object] | None = None,
) -> str:
    """Render ``{ entity(first, skip, orderBy, where) { fields } }``."""

    arguments = [f"first: {first}", f"skip: {skip}"]
    if order_by:
        arguments.append(f"orderBy: {order_by}")
        arguments.append(f"orderDirection: {order_direction}")
    if where:
        arguments.append(f"where: {_format_where(where)}")
    return "{\n  " + entity + "(" + ", ".join(arguments) + ") {" + fields + "  }\n}"


__all__ = [
    "DERIVATIVES_LIQUIDATION_FIELDS",
    "DERIVATIVES_POSITION_FIELDS",
    "DERIVATIVES_POSITION_SNAPSHOT_FIELDS",
    "DERIVATIVES_SWAP_FIELDS",
    "DEX_SWAP_FIELDS",
    "LENDING_EVENT_FIELDS",
    "LENDING_EVENT_FIELDS_REDUCED",
    "LENDING_LIQUIDATION_FIELDS",
    "LENDING_LIQUIDATION_FIELDS_REDUCED",
    "LENDING_MARKET_FIELDS",
    "NFT_MINT_FIELDS",
    "NFT_PROJECT_FIELDS",
    "NFT_TOKEN_FIELDS",
    "NFT_TRANSFER_FIELDS",
    "collection_query",
]
