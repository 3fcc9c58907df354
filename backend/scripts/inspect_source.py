import argparse
import json

from loguru import logger

from chainpulse.core.config import get_settings
from ingestion.client import SubgraphClient
from ingestion.introspection import (
    COMMON_ENTITIES,
    guess_domain_types,
    introspect_source,
    probe_entities,
    probe_fields,
)
from ingestion.sources import get_source_registry


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect the schema exposed by registered subgraphs")
    parser.add_argument(
        "--source",
        action="append",
        default=None,
        help="Registry key to inspect (repeatable, defaults to every source)",
    )
    parser.add_argument(
        "--entity",
        default=None,
        help="Collection to probe for --field candidates (e.g. borrows)",
    )
    parser.add_argument(
        "--field",
        action="append",
        default=None,
        help="Candidate field for --entity (repeatable)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    registry = get_source_registry()

    sources = list(registry)
    if args.source:
        sources = [source for source in sources if source.key in set(args.source)]
        missing = set(args.source) - {source.key for source in sources}
        for key in sorted(missing):
            logger.warning("Unknown source key: {}", key)

    report: dict[str, object] = {}
    for source in sources:
        endpoint = registry.endpoint_for(source)
        with SubgraphClient(endpoint, timeout=settings.subgraph_timeout_seconds) as client:
            fields = introspect_source(client)
            names = [root.name for root in fields if root.is_list]
            entry: dict[str, object] = {
                "protocol": source.protocol,
                "network": source.network,
                "domainType": source.domain_type.value,
                "rootCollections": names,
                "guessedDomains": [domain.value for domain in guess_domain_types(names)],
                "commonEntities": probe_entities(client, COMMON_ENTITIES).available,
            }
            if args.entity and args.field:
                probe = probe_fields(client, args.entity, args.field)
                entry["fieldProbe"] = {
                    "entity": probe.entity,
                    "available": probe.available,
                    "unavailable": probe.unavailable,
                }
        report[source.key] = entry
        logger.info("Inspected {} ({} root collections)", source.key, len(names))

    print(json.dumps(report, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
