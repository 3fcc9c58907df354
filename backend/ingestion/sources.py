"""Catalog of indexed data sources and endpoint resolution."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from functools import lru_cache

from loguru import logger

from chainpulse.core.config import Settings, get_settings
from chainpulse.domain import DomainType, Source


GATEWAY_URL_TEMPLATE = "https://gateway.thegraph.com/api/{api_key}/subgraphs/id"
PUBLIC_HOST = "https://api.thegraph.com/subgraphs/id"

BUILTIN_SOURCES: tuple[Source, ...] = (
    Source(
        key="uniswapV3_mainnet",
        subgraph_id="5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV",
        display_name="Uniswap V3 Mainnet (Messari)",
        protocol="uniswap-v3",
        network="mainnet",
        domain_type=DomainType.DEX,
    ),
    Source(
        key="aaveV3_base",
        subgraph_id="D7mapexM5ZsQckLJai2FawTKXJ7CqYGKM8PErnS3cJi9",
        display_name="Aave V3 Base",
        protocol="aave-v3",
        network="base",
        domain_type=DomainType.LENDING,
    ),
    Source(
        key="artBlocks_mainnet",
        subgraph_id="6bR1oVsRUUs6czNiB6W7NNenTXtVfNd5iSiwvS4QbRPB",
        display_name="Art Blocks Mainnet",
        protocol="art-blocks",
        network="mainnet",
        domain_type=DomainType.NFT,
    ),
)


class SourceRegistry:
    """Immutable lookup over the sources a run may query."""

    def __init__(
        self,
        sources: Iterable[Source],
        *,
        api_key: str | None = None,
        host: str | None = None,
    ) -> None:
        ordered: dict[str, Source] = {}
        for source in sources:
            if source.key in ordered:
                logger.warning("Duplicate source key {}; keeping the first entry", source.key)
                continue
            ordered[source.key] = source
        self._sources = ordered
        self._api_key = api_key
        self._host = host

    @classmethod
    def from_settings(cls, settings: Settings) -> "SourceRegistry":
        sources = list(BUILTIN_SOURCES)
        if settings.gmx_subgraph_id:
            sources.append(
                Source(
                    key="gmx_arbitrum",
                    subgraph_id=settings.gmx_subgraph_id,
                    display_name="GMX Arbitrum (Messari)",
                    protocol="gmx",
                    network="arbitrum",
                    domain_type=DomainType.DERIVATIVES,
                )
            )
        for entry in settings.extra_sources:
            sources.append(
                Source(
                    key=str(entry["key"]),
                    subgraph_id=str(entry["subgraph_id"]),
                    display_name=str(entry.get("display_name") or entry["key"]),
                    protocol=str(entry["protocol"]),
                    network=str(entry["network"]),
                    domain_type=DomainType(entry["domain_type"]),
                )
            )
        disabled = set(settings.disabled_sources)
        if disabled:
            logger.info("Disabled sources: {}", ", ".join(sorted(disabled)))
        return cls(
            (source for source in sources if source.key not in disabled),
            api_key=settings.the_graph_api_key,
            host=settings.the_graph_host,
        )

    def __iter__(self) -> Iterator[Source]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)

    def get(self, key: str) -> Source | None:
        return self._sources.get(key)

    def by_type(self, domain_type: DomainType | str) -> list[Source]:
        wanted = DomainType(domain_type)
        return [source for source in self if source.domain_type == wanted]

    def by_protocol(self, protocol: str) -> list[Source]:
        return [source for source in self if source.protocol == protocol]

    def endpoint_for(self, source: Source) -> str:
        if self._host:
            base = self._host.rstrip("/")
        elif self._api_key:
            base = GATEWAY_URL_TEMPLATE.format(api_key=self._api_key)
        else:
            base = PUBLIC_HOST
        return f"{base}/{source.subgraph_id}"


@lru_cache(maxsize=1)
def get_source_registry() -> SourceRegistry:
    """Registry for the current settings, built once per process."""

    return SourceRegistry.from_settings(get_settings())


__all__ = [
    "BUILTIN_SOURCES",
    "GATEWAY_URL_TEMPLATE",
    "PUBLIC_HOST",
    "SourceRegistry",
    "get_source_registry",
]
