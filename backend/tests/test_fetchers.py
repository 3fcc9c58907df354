from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from chainpulse.domain import DomainType, Source
from ingestion.client import SubgraphQueryError
from ingestion.fetchers import FetchConfig, ProtocolFetcher, split_budget
from ingestion.sources import SourceRegistry

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
_ENTITY = re.compile(r"^\{\s*(\w+)\(")

DEX = Source("dex_a", "dex-id", "Dex A", "uniswap-v3", "mainnet", DomainType.DEX)
DEX_BROKEN = Source("dex_b", "dex-b-id", "Dex B", "uniswap-v3", "base", DomainType.DEX)
LENDING = Source("lend_a", "lend-id", "Lend A", "aave-v3", "base", DomainType.LENDING)
NFT = Source("nft_a", "nft-id", "Nft A", "art-blocks", "mainnet", DomainType.NFT)
PERPS = Source("perp_a", "perp-id", "Perp A", "gmx", "arbitrum", DomainType.DERIVATIVES)


class DummyClient:
    """Answers queries from canned rows keyed by collection name."""

    def __init__(self, rows: dict[str, list[dict]], *, reject: set[str] | None = None) -> None:
        self.rows = rows
        self.reject = reject or set()
        self.queries: list[str] = []
        self.closed = False

    def query(self, query: str) -> dict:
        self.queries.append(query)
        entity = _ENTITY.match(query).group(1)
        if any(token in query for token in self.reject):
            raise SubgraphQueryError("dummy", [f"{entity} rejected"])
        if entity not in self.rows:
            raise SubgraphQueryError("dummy", [f"unknown entity {entity}"])
        first = int(re.search(r"first: (\d+)", query).group(1))
        skip = int(re.search(r"skip: (\d+)", query).group(1))
        return {entity: self.rows[entity][skip : skip + first]}

    def close(self) -> None:
        self.closed = True


def _swaps(count: int) -> list[dict]:
    return [
        {
            "id": f"swap-{index}",
            "timestamp": "1714550000",
            "amountUSD": "100",
            "sender": "0xTrader",
            "pool": {"id": "pool", "token0": {"symbol": "WETH"}, "token1": {"symbol": "USDC"}},
        }
        for index in range(count)
    ]


def _fetcher(registry: SourceRegistry, clients: dict[str, DummyClient], **config) -> ProtocolFetcher:
    def factory(source: Source) -> DummyClient:
        if source.key not in clients:
            raise RuntimeError(f"no endpoint for {source.key}")
        return clients[source.key]

    return ProtocolFetcher(
        registry,
        client_factory=factory,
        config=FetchConfig(batch_size=100, max_workers=2, **config),
        now=NOW,
    )


def test_split_budget():
    """Verify shares floor to whole rows while positive shares keep at least one."""

    assert split_budget(1000, {"swap": 0.35, "liquidation": 0.025, "position": 0.0}) == {
        "swap": 350,
        "liquidation": 25,
        "position": 0,
    }
    assert split_budget(10, {"liquidation": 0.025}) == {"liquidation": 1}


def test_fetch_isolates_failing_source():
    """Verify a source whose client cannot be built is recorded and siblings still load."""

    registry = SourceRegistry([DEX, DEX_BROKEN])
    clients = {"dex_a": DummyClient({"swaps": _swaps(250)})}

    result = _fetcher(registry, clients).fetch_all_protocols(200)

    assert len(result.dex["dex_a"]) == 200
    assert result.dex["dex_b"] == []
    assert result.failures == [
        {"source": "dex_b", "entity_type": "*", "error": "no endpoint for dex_b"}
    ]
    assert clients["dex_a"].closed is True
    assert result.fetched_at == NOW
    assert result.window_start == int(NOW.timestamp()) - 12 * 3600
    assert "timestamp_gte: %d" % result.window_start in clients["dex_a"].queries[0]


def test_fetch_lending_retries_reduced_shape():
    """Verify events fall back to the reduced field set when relations are rejected."""

    registry = SourceRegistry([LENDING])
    client = DummyClient(
        {
            "markets": [{"id": "m1", "totalDepositBalanceUSD": "10", "totalBorrowBalanceUSD": "5"}],
            "borrows": [{"id": "b1", "amountUSD": "50"}],
            "deposits": [{"id": "d1", "amountUSD": "70"}],
            "liquidates": [],
        },
        reject={"account { id }", "liquidatee { id }"},
    )

    result = _fetcher(registry, {"lend_a": client}).fetch_all_protocols(100)
    bundle = result.lending["lend_a"]

    assert [market.market_id for market in bundle.markets] == ["m1"]
    assert [event.event_id for event in bundle.borrows] == ["b1"]
    assert [event.event_id for event in bundle.deposits] == ["d1"]
    assert bundle.borrows[0].account_id is None
    assert result.failures == []


def test_fetch_lending_caps_market_snapshot():
    registry = SourceRegistry([LENDING])
    markets = [{"id": f"m{index}"} for index in range(80)]
    client = DummyClient({"markets": markets, "borrows": [], "deposits": [], "liquidates": []})

    result = _fetcher(registry, {"lend_a": client}, lending_market_limit=50).fetch_all_protocols(500)

    assert len(result.lending["lend_a"].markets) == 50
    market_queries = [query for query in client.queries if "markets(" in query]
    assert "orderBy: totalValueLockedUSD" in market_queries[0]


def test_fetch_entity_failure_keeps_other_entities():
    """Verify one failing entity type is logged while the others are kept."""

    registry = SourceRegistry([NFT])
    client = DummyClient(
        {
            "projects": [{"id": "p1", "name": "Chromie Squiggle"}],
            "transfers": [{"id": "t1", "from": "0xa", "to": "0xb"}],
            "tokens": [{"id": "k1", "tokenId": "1"}],
        }
    )

    result = _fetcher(registry, {"nft_a": client}).fetch_all_protocols(100)

    types = sorted(entity.entity_type for entity in result.nft["nft_a"])
    assert types == ["project", "token", "transfer"]
    assert len(result.failures) == 1
    assert result.failures[0]["entity_type"] == "mint"
    assert result.failures[0]["source"] == "nft_a"


def test_fetch_derivatives_splits_budget():
    registry = SourceRegistry([PERPS])
    rows = [{"id": f"r{index}"} for index in range(1000)]
    client = DummyClient(
        {"swaps": rows, "positionSnapshots": rows, "liquidates": rows, "positions": rows}
    )

    result = _fetcher(registry, {"perp_a": client}).fetch_all_protocols(1000)
    counts: dict[str, int] = {}
    for entity in result.derivatives["perp_a"]:
        counts[entity.entity_type] = counts.get(entity.entity_type, 0) + 1

    assert counts == {"swap": 350, "positionSnapshot": 600, "liquidation": 25, "position": 25}
    assert result.record_counts()["derivatives"] == 1000


@pytest.mark.parametrize("limit", [50, 120])
def test_fetch_result_counts_by_domain(limit):
    registry = SourceRegistry([DEX])
    client = DummyClient({"swaps": _swaps(500)})

    result = _fetcher(registry, {"dex_a": client}).fetch_all_protocols(limit)

    assert result.record_counts() == {"dex": limit, "lending": 0, "nft": 0, "derivatives": 0}
