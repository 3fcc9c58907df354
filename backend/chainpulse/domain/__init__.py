"""Domain models representing normalized on-chain activity."""

from .models import (
    DerivativesEntity,
    DexSwap,
    DomainType,
    FetchResult,
    LendingBundle,
    LendingEvent,
    LendingMarket,
    LendingRate,
    NftEntity,
    Source,
    SourceTag,
)

__all__ = [
    "DerivativesEntity",
    "DexSwap",
    "DomainType",
    "FetchResult",
    "LendingBundle",
    "LendingEvent",
    "LendingMarket",
    "LendingRate",
    "NftEntity",
    "Source",
    "SourceTag",
]
