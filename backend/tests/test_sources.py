from __future__ import annotations

from chainpulse.core.config import Settings
from chainpulse.domain import DomainType, Source
from ingestion.sources import BUILTIN_SOURCES, PUBLIC_HOST, SourceRegistry


def _source(key: str, domain_type: DomainType = DomainType.DEX) -> Source:
    return Source(
        key=key,
        subgraph_id=f"{key}-id",
        display_name=key.title(),
        protocol="test",
        network="mainnet",
        domain_type=domain_type,
    )


def test_endpoint_prefers_explicit_host():
    """Verify an explicit host wins over the gateway key."""

    registry = SourceRegistry([_source("a")], api_key="secret", host="https://graph.local/")

    assert registry.endpoint_for(_source("a")) == "https://graph.local/a-id"


def test_endpoint_uses_gateway_with_key():
    registry = SourceRegistry([_source("a")], api_key="secret")

    assert registry.endpoint_for(_source("a")) == (
        "https://gateway.thegraph.com/api/secret/subgraphs/id/a-id"
    )


def test_endpoint_falls_back_to_public_host():
    registry = SourceRegistry([_source("a")])

    assert registry.endpoint_for(_source("a")) == f"{PUBLIC_HOST}/a-id"


def test_registry_keeps_first_duplicate_and_filters_by_type():
    """Verify duplicate keys are dropped and lookups respect domain type."""

    first = _source("a")
    duplicate = Source(
        key="a",
        subgraph_id="other",
        display_name="Other",
        protocol="test",
        network="mainnet",
        domain_type=DomainType.NFT,
    )
    registry = SourceRegistry([first, duplicate, _source("b", DomainType.LENDING)])

    assert len(registry) == 2
    assert registry.get("a") is first
    assert [source.key for source in registry.by_type("lending")] == ["b"]
    assert registry.by_type(DomainType.NFT) == []


def test_from_settings_builds_catalog(test_settings: Settings):
    """Verify optional, extra, and disabled sources shape the registry."""

    settings = test_settings.model_copy(
        update={
            "gmx_subgraph_id": "gmx-id",
            "disabled_sources": ["artBlocks_mainnet"],
            "extra_sources": [
                {
                    "key": "sushi_arbitrum",
                    "subgraph_id": "sushi-id",
                    "protocol": "sushiswap",
                    "network": "arbitrum",
                    "domain_type": "dex",
                }
            ],
        }
    )

    registry = SourceRegistry.from_settings(settings)
    keys = [source.key for source in registry]

    assert keys == ["uniswapV3_mainnet", "aaveV3_base", "gmx_arbitrum", "sushi_arbitrum"]
    assert [source.key for source in registry.by_type(DomainType.DEX)] == [
        "uniswapV3_mainnet",
        "sushi_arbitrum",
    ]
    assert registry.get("gmx_arbitrum").domain_type is DomainType.DERIVATIVES
    assert registry.get("sushi_arbitrum").display_name == "sushi_arbitrum"
    assert registry.endpoint_for(registry.get("gmx_arbitrum")) == "https://subgraphs.test/gmx-id"


def test_from_settings_skips_gmx_without_id(test_settings: Settings):
    registry = SourceRegistry.from_settings(test_settings)

    assert len(registry) == len(BUILTIN_SOURCES)
    assert registry.by_type(DomainType.DERIVATIVES) == []


def test_source_tag_carries_provenance():
    tag = BUILTIN_SOURCES[0].tag

    assert tag.protocol == "uniswap-v3"
    assert tag.network == "mainnet"
    assert tag.source_name == BUILTIN_SOURCES[0].display_name
