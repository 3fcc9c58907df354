"""Discover what a subgraph exposes before wiring it into the registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence

from loguru import logger

from chainpulse.domain import DomainType

from .client import SubgraphQueryError

SCHEMA_QUERY = """
{
  __schema {
    queryType {
      fields {
        name
        type { name kind ofType { name kind } }
      }
    }
  }
}
"""

COMMON_ENTITIES: tuple[str, ...] = (
    "pools",
    "pairs",
    "swaps",
    "transactions",
    "orders",
    "markets",
    "tokens",
    "users",
    "positions",
    "liquidityPositions",
)

_DOMAIN_HINTS: tuple[tuple[DomainType, tuple[str, ...]], ...] = (
    (DomainType.DEX, ("swap", "pool", "pair")),
    (DomainType.LENDING, ("borrow", "lend", "market")),
    (DomainType.NFT, ("transfer", "sale", "listing", "collection", "project")),
    (DomainType.DERIVATIVES, ("position", "order", "future", "perp")),
)


class _Queryable(Protocol):
    def query(self, query: str) -> Mapping[str, Any]: ...


@dataclass(slots=True)
class RootField:
    name: str
    type_name: str | None
    is_list: bool


@dataclass(slots=True)
class FieldProbe:
    entity: str
    available: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)


def _root_field(raw: Mapping[str, Any]) -> RootField:
    type_info = raw.get("type") or {}
    inner = type_info.get("ofType") or {}
    is_list = type_info.get("kind") == "LIST" or inner.get("kind") == "LIST"
    return RootField(
        name=str(raw.get("name")),
        type_name=type_info.get("name") or inner.get("name"),
        is_list=is_list,
    )


def introspect_source(client: _Queryable) -> list[RootField]:
    """Return the root query fields of a subgraph, without GraphQL meta fields."""

    data = client.query(SCHEMA_QUERY)
    schema = data.get("__schema") or {}
    raw_fields = (schema.get("queryType") or {}).get("fields") or []
    return [
        _root_field(raw)
        for raw in raw_fields
        if isinstance(raw, Mapping) and not str(raw.get("name", "")).startswith("__")
    ]


def probe_fields(
    client: _Queryable,
    entity: str,
    candidates: Sequence[str],
) -> FieldProbe:
    """Check which ``candidates`` the ``entity`` collection accepts, one query each."""

    probe = FieldProbe(entity=entity)
    for candidate in candidates:
        selection = "id" if candidate == "id" else f"id {candidate}"
        try:
            client.query(f"{{ {entity}(first: 1) {{ {selection} }} }}")
        except SubgraphQueryError as exc:
            logger.debug("{}.{} rejected: {}", entity, candidate, exc)
            probe.unavailable.append(candidate)
            continue
        probe.available.append(candidate)
    return probe


def probe_entities(client: _Queryable, entities: Iterable[str] = COMMON_ENTITIES) -> FieldProbe:
    """Check which collection names a subgraph answers with at least an ``id``."""

    probe = FieldProbe(entity="<root>")
    for entity in entities:
        try:
            client.query(f"{{ {entity}(first: 1) {{ id }} }}")
        except SubgraphQueryError:
            probe.unavailable.append(entity)
            continue
        probe.available.append(entity)
    return probe


def guess_domain_types(entity_names: Iterable[str]) -> list[DomainType]:
    """Infer likely domains from exposed entity names, in registry domain order."""

    lowered = [name.lower() for name in entity_names]
    return [
        domain
        for domain, hints in _DOMAIN_HINTS
        if any(hint in name for name in lowered for hint in hints)
    ]


__all__ = [
    "COMMON_ENTITIES",
    "FieldProbe",
    "RootField",
    "guess_domain_types",
    "introspect_source",
    "probe_entities",
    "probe_fields",
]
