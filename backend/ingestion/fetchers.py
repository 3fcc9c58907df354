"""Per-domain retrieval over the source registry.

Every domain is fetched in turn; inside a domain the independent entity
types of one source are fetched on a small thread pool. A failing entity
type or source is logged and contributes an empty list, so one broken
source never takes down its siblings.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from loguru import logger

from chainpulse.core.config import (
    DEFAULT_DERIVATIVES_ENTITY_SHARES,
    DEFAULT_NFT_ENTITY_SHARES,
    Settings,
)
from chainpulse.domain import DomainType, FetchResult, LendingBundle, Source

from . import queries
from .client import SubgraphClient, SubgraphQueryError
from .normalize import normalize_records
from .pagination import DEFAULT_BATCH_SIZE, fetch_all, hours_ago_timestamp
from .sources import SourceRegistry


class QueryClient(Protocol):
    def query(self, query: str) -> Mapping[str, Any]: ...

    def close(self) -> None: ...


ClientFactory = Callable[[Source], QueryClient]


@dataclass(slots=True)
class FetchConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    window_hours: int = 12
    lending_market_limit: int = 50
    max_workers: int = 4
    derivatives_shares: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_DERIVATIVES_ENTITY_SHARES)
    )
    nft_shares: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_NFT_ENTITY_SHARES))

    @classmethod
    def from_settings(cls, settings: Settings) -> "FetchConfig":
        return cls(
            batch_size=settings.fetch_batch_size,
            window_hours=settings.fetch_window_hours,
            lending_market_limit=settings.lending_market_limit,
            max_workers=settings.fetch_max_workers,
            derivatives_shares=dict(settings.derivatives_entity_shares),
            nft_shares=dict(settings.nft_entity_shares),
        )


@dataclass(slots=True)
class EntityFetch:
    """Outcome of fetching one entity type from one source."""

    entity_type: str
    records: list[Any] = field(default_factory=list)
    error: str | None = None


def split_budget(limit: int, shares: Mapping[str, float]) -> dict[str, int]:
    """Divide ``limit`` across entity types; every positive share gets at least one row."""

    budget: dict[str, int] = {}
    for entity_type, share in shares.items():
        if share <= 0:
            budget[entity_type] = 0
            continue
        budget[entity_type] = max(1, int(limit * share))
    return budget


def default_client_factory(registry: SourceRegistry, *, timeout: float) -> ClientFactory:
    def _factory(source: Source) -> SubgraphClient:
        return SubgraphClient(registry.endpoint_for(source), timeout=timeout)

    return _factory


class ProtocolFetcher:
    """Fetch every registered source, domain by domain."""

    def __init__(
        self,
        registry: SourceRegistry,
        *,
        client_factory: ClientFactory,
        config: FetchConfig | None = None,
        now: datetime | None = None,
    ) -> None:
        self._registry = registry
        self._client_factory = client_factory
        self._config = config or FetchConfig()
        self._now = now

    # ------------------------------------------------------------------
    # Orchestration

    def fetch_all_protocols(self, limit_per_protocol: int) -> FetchResult:
        fetched_at = self._now or datetime.now(timezone.utc)
        since = hours_ago_timestamp(self._config.window_hours, now=fetched_at)
        result = FetchResult(fetched_at=fetched_at, window_start=since)

        handlers: tuple[tuple[DomainType, Callable[..., list[EntityFetch]]], ...] = (
            (DomainType.DEX, self._fetch_dex),
            (DomainType.LENDING, self._fetch_lending),
            (DomainType.NFT, self._fetch_nft),
            (DomainType.DERIVATIVES, self._fetch_derivatives),
        )
        for domain, handler in handlers:
            for source in self._registry.by_type(domain):
                fetches = self._fetch_source(handler, source, limit_per_protocol, since)
                self._collect(result, domain, source, fetches)

        logger.info(
            "Fetched records by domain: {}",
            ", ".join(f"{domain}={count}" for domain, count in result.record_counts().items()),
        )
        return result

    def _fetch_source(
        self,
        handler: Callable[..., list[EntityFetch]],
        source: Source,
        limit: int,
        since: int,
    ) -> list[EntityFetch]:
        logger.info(
            "Fetching {} ({}) limit={} since={}",
            source.display_name,
            source.domain_type.value,
            limit,
            since,
        )
        try:
            client = self._client_factory(source)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Could not build a client for source {}", source.key)
            return [EntityFetch(entity_type="*", error=str(exc))]
        try:
            return handler(client, source, limit, since)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Fetch failed for source {}", source.key)
            return [EntityFetch(entity_type="*", error=str(exc))]
        finally:
            client.close()

    @staticmethod
    def _collect(
        result: FetchResult,
        domain: DomainType,
        source: Source,
        fetches: list[EntityFetch],
    ) -> None:
        records: list[Any] = []
        for fetch in fetches:
            if fetch.error is not None:
                result.failures.append(
                    {"source": source.key, "entity_type": fetch.entity_type, "error": fetch.error}
                )
            records.extend(fetch.records)

        if domain is DomainType.DEX:
            result.dex[source.key] = records
        elif domain is DomainType.LENDING:
            bundle = LendingBundle()
            for fetch in fetches:
                if fetch.entity_type == "market":
                    bundle.markets.extend(fetch.records)
                else:
                    bundle.events.extend(fetch.records)
            result.lending[source.key] = bundle
        elif domain is DomainType.NFT:
            result.nft[source.key] = records
        else:
            result.derivatives[source.key] = records

        logger.info("{}: {} records", source.display_name, len(records))

    def _fetch_entity(
        self,
        client: QueryClient,
        source: Source,
        *,
        entity_type: str,
        entity_name: str,
        fields: str,
        limit: int,
        where: Mapping[str, object] | None = None,
        order_by: str | None = "timestamp",
        reduced_fields: str | None = None,
    ) -> EntityFetch:
        if limit <= 0:
            return EntityFetch(entity_type=entity_type)

        def _rows(selection: str) -> list[dict[str, Any]]:
            return fetch_all(
                client.query,
                lambda first, skip: queries.collection_query(
                    entity_name,
                    selection,
                    first=first,
                    skip=skip,
                    order_by=order_by,
                    where=where,
                ),
                limit,
                batch_size=self._config.batch_size,
                entity=entity_name,
            )

        domain = source.domain_type.value
        try:
            try:
                rows = _rows(fields)
            except SubgraphQueryError as exc:
                if reduced_fields is None:
                    raise
                logger.warning(
                    "{} rejected the relational {} query ({}); retrying with the reduced shape",
                    source.display_name,
                    entity_name,
                    exc,
                )
                rows = _rows(reduced_fields)
            records = normalize_records(domain, entity_type, rows, source.tag)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Failed to fetch {} from {}; continuing without them",
                entity_name,
                source.display_name,
            )
            return EntityFetch(entity_type=entity_type, error=str(exc))

        logger.info("{}: fetched {} {}", source.display_name, len(records), entity_name)
        return EntityFetch(entity_type=entity_type, records=records)

    def _fan_out(self, tasks: list[Callable[[], EntityFetch]]) -> list[EntityFetch]:
        workers = max(1, min(self._config.max_workers, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            futures = [pool.submit(task) for task in tasks]
            return [future.result() for future in futures]

    # ------------------------------------------------------------------
    # Domains

    def _fetch_dex(
        self, client: QueryClient, source: Source, limit: int, since: int
    ) -> list[EntityFetch]:
        return [
            self._fetch_entity(
                client,
                source,
                entity_type="swap",
                entity_name="swaps",
                fields=queries.DEX_SWAP_FIELDS,
                limit=limit,
                where={"timestamp_gte": since},
            )
        ]

    def _fetch_lending(
        self, client: QueryClient, source: Source, limit: int, since: int
    ) -> list[EntityFetch]:
        window = {"timestamp_gte": since}
        return self._fan_out(
            [
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="market",
                    entity_name="markets",
                    fields=queries.LENDING_MARKET_FIELDS,
                    limit=min(limit, self._config.lending_market_limit),
                    order_by="totalValueLockedUSD",
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="borrow",
                    entity_name="borrows",
                    fields=queries.LENDING_EVENT_FIELDS,
                    reduced_fields=queries.LENDING_EVENT_FIELDS_REDUCED,
                    limit=limit,
                    where=window,
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="deposit",
                    entity_name="deposits",
                    fields=queries.LENDING_EVENT_FIELDS,
                    reduced_fields=queries.LENDING_EVENT_FIELDS_REDUCED,
                    limit=limit,
                    where=window,
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="liquidation",
                    entity_name="liquidates",
                    fields=queries.LENDING_LIQUIDATION_FIELDS,
                    reduced_fields=queries.LENDING_LIQUIDATION_FIELDS_REDUCED,
                    limit=limit,
                    where=window,
                ),
            ]
        )

    def _fetch_nft(
        self, client: QueryClient, source: Source, limit: int, since: int
    ) -> list[EntityFetch]:
        budget = split_budget(limit, self._config.nft_shares)
        return self._fan_out(
            [
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="project",
                    entity_name="projects",
                    fields=queries.NFT_PROJECT_FIELDS,
                    limit=budget.get("project", 0),
                    order_by="updatedAt",
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="transfer",
                    entity_name="transfers",
                    fields=queries.NFT_TRANSFER_FIELDS,
                    limit=budget.get("transfer", 0),
                    order_by="blockTimestamp",
                    where={"blockTimestamp_gte": since},
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="token",
                    entity_name="tokens",
                    fields=queries.NFT_TOKEN_FIELDS,
                    limit=budget.get("token", 0),
                    order_by="updatedAt",
                    where={"updatedAt_gte": since},
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="mint",
                    entity_name="primaryPurchases",
                    fields=queries.NFT_MINT_FIELDS,
                    limit=budget.get("mint", 0),
                    order_by=None,
                ),
            ]
        )

    def _fetch_derivatives(
        self, client: QueryClient, source: Source, limit: int, since: int
    ) -> list[EntityFetch]:
        budget = split_budget(limit, self._config.derivatives_shares)
        window = {"timestamp_gte": since}
        return self._fan_out(
            [
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="swap",
                    entity_name="swaps",
                    fields=queries.DERIVATIVES_SWAP_FIELDS,
                    limit=budget.get("swap", 0),
                    where=window,
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="positionSnapshot",
                    entity_name="positionSnapshots",
                    fields=queries.DERIVATIVES_POSITION_SNAPSHOT_FIELDS,
                    limit=budget.get("positionSnapshot", 0),
                    where=window,
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="liquidation",
                    entity_name="liquidates",
                    fields=queries.DERIVATIVES_LIQUIDATION_FIELDS,
                    limit=budget.get("liquidation", 0),
                    where=window,
                ),
                lambda: self._fetch_entity(
                    client,
                    source,
                    entity_type="position",
                    entity_name="positions",
                    fields=queries.DERIVATIVES_POSITION_FIELDS,
                    limit=budget.get("position", 0),
                    order_by="timestampOpened",
                    where={"timestampOpened_gte": since},
                ),
            ]
        )


__all__ = [
    "ClientFactory",
    "EntityFetch",
    "FetchConfig",
    "ProtocolFetcher",
    "default_client_factory",
    "split_budget",
]
