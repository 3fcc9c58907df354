import argparse
import json

from loguru import logger

from chainpulse.core.config import MAX_LIMIT_PER_PROTOCOL, MIN_LIMIT_PER_PROTOCOL, get_settings
from chainpulse.db import init_db
from ingestion.service import ingest_protocols


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch every registered subgraph and store raw rows")
    parser.add_argument(
        "--limit-per-protocol",
        type=int,
        default=None,
        help=f"Row budget per source ({MIN_LIMIT_PER_PROTOCOL}-{MAX_LIMIT_PER_PROTOCOL})",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    limit = args.limit_per_protocol
    if limit is not None and not MIN_LIMIT_PER_PROTOCOL <= limit <= MAX_LIMIT_PER_PROTOCOL:
        raise SystemExit(
            f"--limit-per-protocol must be between {MIN_LIMIT_PER_PROTOCOL} and {MAX_LIMIT_PER_PROTOCOL}"
        )
    init_db()

    result, written = ingest_protocols(limit, settings=settings)
    if result.failures:
        logger.warning("Skipped {} failed fetches: {}", len(result.failures), result.failures)
    print(json.dumps({"recordCounts": result.record_counts(), "persistedRows": written}, indent=2))


if __name__ == "__main__":
    main()
