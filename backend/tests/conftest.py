from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from chainpulse.core.config import Settings
from chainpulse.db import create_db_engine, create_session_factory, init_db
from chainpulse.domain import SourceTag


@pytest.fixture
def pipeline_args(tmp_path) -> argparse.Namespace:
    return argparse.Namespace(
        limit_per_protocol=100,
        dry_run=True,
        prompt_path=tmp_path / "prompt.md",
        summary_path=tmp_path / "summary.json",
        cleanup=None,
    )


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path/'chainpulse.db'}",
        the_graph_api_key=None,
        the_graph_host="https://subgraphs.test",
        gmx_subgraph_id=None,
        disabled_sources=[],
        extra_sources=[],
        fetch_batch_size=50,
        fetch_max_workers=2,
        inference_api_key="test-key",
        cleanup_raw_after_report=False,
    )


@pytest.fixture
def session_factory(test_settings):
    engine = create_db_engine(test_settings.resolved_database_url)
    init_db(engine)
    factory = create_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def dex_tag() -> SourceTag:
    return SourceTag(protocol="uniswap-v3", network="mainnet", source_name="Uniswap V3 Mainnet")


@pytest.fixture
def lending_tag() -> SourceTag:
    return SourceTag(protocol="aave-v3", network="base", source_name="Aave V3 Base")
