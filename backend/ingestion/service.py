from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from loguru import logger
from sqlalchemy.orm import Session

from chainpulse.core.config import Settings, get_settings
from chainpulse.db import get_session_factory
from chainpulse.domain import FetchResult
from chainpulse.repositories import RawDataRepository

from .fetchers import FetchConfig, ProtocolFetcher, default_client_factory
from .sources import SourceRegistry, get_source_registry


@contextmanager
def session_scope(session_factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def build_fetcher(
    settings: Settings,
    registry: SourceRegistry | None = None,
) -> ProtocolFetcher:
    registry = registry or get_source_registry()
    return ProtocolFetcher(
        registry,
        client_factory=default_client_factory(
            registry, timeout=settings.subgraph_timeout_seconds
        ),
        config=FetchConfig.from_settings(settings),
    )


def ingest_protocols(
    limit_per_protocol: int | None = None,
    *,
    settings: Settings | None = None,
    registry: SourceRegistry | None = None,
) -> tuple[FetchResult, dict[str, int]]:
    """Fetch every registered source and persist the raw rows, without reporting."""

    settings = settings or get_settings()
    limit = limit_per_protocol or settings.default_limit_per_protocol
    result = build_fetcher(settings, registry).fetch_all_protocols(limit)
    with session_scope() as session:
        repo = RawDataRepository(session, batch_size=settings.upsert_batch_size)
        written = repo.save_fetch_result(result)
    logger.info("Ingested {} rows across {} tables", sum(written.values()), len(written))
    return result, written
