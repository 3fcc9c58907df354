from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from chainpulse.domain import DomainType, Source
from chainpulse.models import DexSwapRecord, ReportRecord
from chainpulse.services.report_service import CompletionResult, ReportGenerationError
from ingestion.service import session_scope
from ingestion.sources import SourceRegistry
from pipelines.daily_run import (
    PipelineStage,
    PipelineStageError,
    _stage_cleanup,
    _stage_persist,
    _stage_persist_report,
    _stage_summarize,
    _stage_synthesize,
    make_args,
    run_pipeline,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
_ENTITY = re.compile(r"^\{\s*(\w+)\(")

DEX = Source("dex_a", "dex-id", "Dex A", "uniswap-v3", "mainnet", DomainType.DEX)
LENDING = Source("lend_a", "lend-id", "Lend A", "aave-v3", "base", DomainType.LENDING)
NFT = Source("nft_a", "nft-id", "Nft A", "art-blocks", "mainnet", DomainType.NFT)

ROWS: dict[str, list[dict]] = {
    "swaps": [
        {
            "id": "s1",
            "timestamp": "1714550400",
            "amountUSD": "120000",
            "amount0": "40",
            "amount1": "-120000",
            "sender": "0xWhale",
            "pool": {"id": "p1", "feeTier": "500", "token0": {"symbol": "WETH"}, "token1": {"symbol": "USDC"}},
        }
    ],
    "markets": [
        {
            "id": "m1",
            "name": "Aave WETH",
            "inputToken": {"symbol": "WETH"},
            "totalDepositBalanceUSD": "1000000",
            "totalBorrowBalanceUSD": "850000",
            "liquidationThreshold": "80",
        }
    ],
    "borrows": [
        {
            "id": "b1",
            "timestamp": "1714550500",
            "amountUSD": "30000",
            "account": {"id": "0xwhale"},
            "market": {"id": "m1", "name": "Aave WETH"},
        }
    ],
    "deposits": [],
    "liquidates": [],
    "transfers": [
        {
            "id": "t1",
            "from": "0xMinter",
            "to": "0xCollector",
            "blockNumber": "19770000",
            "blockTimestamp": "1714550600",
            "transactionHash": "0xtx1",
            "token": {"id": "tok-7", "tokenId": "7", "project": {"id": "proj-1", "name": "Fidenza"}},
        }
    ],
}


class DummyClient:
    def __init__(self) -> None:
        self.queries: list[str] = []

    def query(self, query: str) -> dict:
        self.queries.append(query)
        entity = _ENTITY.match(query).group(1)
        skip = int(re.search(r"skip: (\d+)", query).group(1))
        return {entity: ROWS.get(entity, [])[skip:]}

    def close(self) -> None:
        pass


class DummyClientFactory:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def __call__(self, source: Source) -> DummyClient:
        self.calls.append(source.key)
        return DummyClient()


class DummySynthesizer:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.prompts: list[str] = []
        self.error = error

    def complete(self, prompt: str) -> CompletionResult:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return CompletionResult(content="# On-chain Daily\n\nInsight: whales.", model="gpt-4o", tokens_used=4321)


def _run(args, settings, session_factory=None, **overrides):
    factory = overrides.pop("client_factory", None) or DummyClientFactory()
    registry = overrides.pop("registry", None) or SourceRegistry([DEX, LENDING])
    scope = None
    if session_factory is not None:
        scope = lambda: session_scope(session_factory)  # noqa: E731
    return run_pipeline(
        args,
        settings,
        now=NOW,
        registry=registry,
        client_factory=factory,
        session_factory=scope,
        init_db_fn=lambda: None,
        **overrides,
    )


def test_pipeline_end_to_end(test_settings, session_factory, tmp_path):
    """Verify a full run stores raw rows and the report and writes the summary."""

    synthesizer = DummySynthesizer()
    args = make_args(limit_per_protocol=100, summary_path=tmp_path / "summary.json")

    summary = _run(args, test_settings, session_factory, synthesizer=synthesizer)

    assert summary.completed_stages == [stage.value for stage in PipelineStage]
    assert summary.record_counts == {"dex": 1, "lending": 2, "nft": 0, "derivatives": 0}
    assert summary.persisted_rows["graph_dex_swaps"] == 1
    assert summary.report_date == date(2024, 5, 1)
    assert summary.report_source == "graph"
    assert summary.tokens_used == 4321
    assert summary.report.startswith("# On-chain Daily")

    prompt = synthesizer.prompts[0]
    assert "### DEX Protocols" in prompt
    assert "Protocols: uniswap-v3" in prompt
    assert "0xwhale" in prompt

    with session_factory() as session:
        record = session.execute(select(ReportRecord)).scalar_one()
        assert record.report_content["report"].startswith("# On-chain Daily")
        assert record.report_content["rawDataSummary"]["metadata"]["limitPerProtocol"] == 100
        assert record.report_content["rawDataSummary"]["lending"]["riskSignals"][0]["marketId"] == "m1"
        assert record.tokens_used == 4321

    written = json.loads((tmp_path / "summary.json").read_text())
    assert written["completed_stages"][-1] == "cleanup"
    assert "report" not in written


def test_pipeline_dry_run_skips_side_effects(test_settings, pipeline_args):
    """Verify a dry run never persists or calls the completion model."""

    synthesizer = DummySynthesizer()

    summary = _run(pipeline_args, test_settings, synthesizer=synthesizer)

    assert summary.completed_stages == ["fetch", "summarize", "correlate", "compact"]
    assert synthesizer.prompts == []
    assert summary.persisted_rows == {}
    assert summary.report is None
    assert summary.prompt_chars > 0
    assert pipeline_args.prompt_path.read_text().startswith("You are an on-chain research lead")
    assert json.loads(pipeline_args.summary_path.read_text())["dry_run"] is True


def test_pipeline_requires_inference_key_before_fetching(test_settings):
    """Verify a missing key fails fast without touching any source."""

    settings = test_settings.model_copy(update={"inference_api_key": None})
    factory = DummyClientFactory()

    with pytest.raises(PipelineStageError) as excinfo:
        _run(make_args(limit_per_protocol=100), settings, client_factory=factory)

    assert excinfo.value.stage is PipelineStage.SYNTHESIZE
    assert factory.calls == []


def test_pipeline_wraps_stage_failures(test_settings, session_factory):
    """Verify a completion failure is tagged with its stage after raw rows were stored."""

    synthesizer = DummySynthesizer(error=ReportGenerationError(503, "upstream unavailable"))

    with pytest.raises(PipelineStageError) as excinfo:
        _run(make_args(limit_per_protocol=100), test_settings, session_factory, synthesizer=synthesizer)

    assert excinfo.value.stage is PipelineStage.SYNTHESIZE
    assert "upstream unavailable" in str(excinfo.value)
    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(DexSwapRecord)).scalar_one() == 1
        assert session.execute(select(func.count()).select_from(ReportRecord)).scalar_one() == 0


def test_pipeline_cleanup_purges_raw_rows(test_settings, session_factory):
    settings = test_settings.model_copy(update={"raw_retention_hours": 0.0})

    summary = _run(
        make_args(limit_per_protocol=100, cleanup=True),
        settings,
        session_factory,
        synthesizer=DummySynthesizer(),
    )

    assert summary.cleanup_counts["graph_dex_swaps"] == 1
    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(DexSwapRecord)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(ReportRecord)).scalar_one() == 1


def test_pipeline_isolates_failed_source(test_settings, pipeline_args):
    """Verify a broken source is reported and the run still completes."""

    class FlakyFactory(DummyClientFactory):
        def __call__(self, source: Source) -> DummyClient:
            if source.key == "lend_a":
                raise RuntimeError("endpoint unreachable")
            return super().__call__(source)

    summary = _run(pipeline_args, test_settings, client_factory=FlakyFactory())

    assert summary.record_counts["dex"] == 1
    assert summary.record_counts["lending"] == 0
    assert summary.fetch_failures == [
        {"source": "lend_a", "entity_type": "*", "error": "endpoint unreachable"}
    ]
    assert "compact" in summary.completed_stages


def test_pipeline_failed_domain_leaves_other_summaries_intact(test_settings, session_factory):
    """Verify a failing lending source zeroes its section while DEX and NFT summaries carry data."""

    class LendingDownFactory(DummyClientFactory):
        def __call__(self, source: Source) -> DummyClient:
            if source.domain_type is DomainType.LENDING:
                raise RuntimeError("lending endpoint down")
            return super().__call__(source)

    synthesizer = DummySynthesizer()

    summary = _run(
        make_args(limit_per_protocol=100),
        test_settings,
        session_factory,
        client_factory=LendingDownFactory(),
        registry=SourceRegistry([DEX, LENDING, NFT]),
        synthesizer=synthesizer,
    )

    assert summary.record_counts == {"dex": 1, "lending": 0, "nft": 1, "derivatives": 0}
    assert [failure["source"] for failure in summary.fetch_failures] == ["lend_a"]
    assert summary.persisted_rows["graph_nft_data"] == 1

    with session_factory() as session:
        record = session.execute(select(ReportRecord)).scalar_one()
        raw_summary = record.report_content["rawDataSummary"]

    nft = raw_summary["nft"]
    assert nft["overview"]["totalTransfers"] == 1
    assert nft["overview"]["uniqueCollectors"] == 1
    assert nft["recentTransfers"][0]["to"] == "0xcollector"
    assert nft["featuredProjects"][0]["name"] == "Fidenza"

    assert raw_summary["dex"]["overview"]["totalSwaps"] == 1
    assert raw_summary["dex"]["overview"]["totalVolumeUSD"] == 120000

    lending = raw_summary["lending"]["overview"]
    assert lending["marketsCovered"] == 0
    assert lending["totalDepositsUSD"] == 0
    assert lending["borrowEvents"] == 0
    assert raw_summary["lending"]["riskSignals"] == []
    assert "0xcollector" in synthesizer.prompts[0]


@pytest.mark.parametrize("limit", [10, 20_000])
def test_pipeline_rejects_out_of_range_limit(test_settings, limit):
    with pytest.raises(ValueError):
        _run(make_args(limit_per_protocol=limit, dry_run=True), test_settings)


@pytest.mark.parametrize(
    "stage",
    [_stage_persist, _stage_summarize, _stage_synthesize, _stage_persist_report, _stage_cleanup],
)
def test_stage_without_upstream_output_raises(stage):
    """Verify stages reject missing inputs with a runtime error rather than an assert."""

    state = SimpleNamespace(
        fetch=None, session_factory=None, prompt=None, synthesizer=None, completion=None, cleanup=True
    )

    with pytest.raises(RuntimeError, match="is not available at this stage"):
        stage(state)
