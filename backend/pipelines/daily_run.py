from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ContextManager, TypeVar
from uuid import uuid4

from loguru import logger

from chainpulse.core.config import (
    MAX_LIMIT_PER_PROTOCOL,
    MIN_LIMIT_PER_PROTOCOL,
    Settings,
    get_settings,
)
from chainpulse.db import init_db
from chainpulse.domain import DomainType, FetchResult
from chainpulse.repositories import RawDataRepository, ReportRepository
from chainpulse.services.report_service import (
    CompletionResult,
    ReportSynthesizer,
    build_report_content,
)
from ingestion.fetchers import (
    ClientFactory,
    FetchConfig,
    ProtocolFetcher,
    default_client_factory,
)
from ingestion.service import session_scope
from ingestion.sources import SourceRegistry, get_source_registry

from .prompt import ReportPrompt, build_report_prompt
from .summaries import (
    summarize_cross_protocol,
    summarize_derivatives,
    summarize_dex,
    summarize_lending,
    summarize_nft,
)


class PipelineStage(str, Enum):
    FETCH = "fetch"
    PERSIST = "persist"
    SUMMARIZE = "summarize"
    CORRELATE = "correlate"
    COMPACT = "compact"
    SYNTHESIZE = "synthesize"
    PERSIST_REPORT = "persist_report"
    CLEANUP = "cleanup"


# Stages that write to storage or call the completion model.
_EFFECTFUL_STAGES = frozenset(
    {
        PipelineStage.PERSIST,
        PipelineStage.SYNTHESIZE,
        PipelineStage.PERSIST_REPORT,
        PipelineStage.CLEANUP,
    }
)


class PipelineStageError(RuntimeError):
    """A fatal failure, tagged with the stage that raised it."""

    def __init__(self, stage: PipelineStage, message: str) -> None:
        self.stage = stage
        super().__init__(f"Pipeline stage '{stage.value}' failed: {message}")


@dataclass(slots=True)
class PipelineSummary:
    run_id: str
    started_at: datetime
    limit_per_protocol: int
    dry_run: bool
    record_counts: dict[str, int] = field(default_factory=dict)
    persisted_rows: dict[str, int] = field(default_factory=dict)
    fetch_failures: list[dict[str, str]] = field(default_factory=list)
    prompt_chars: int = 0
    estimated_prompt_tokens: int = 0
    tokens_used: int | None = None
    model_used: str | None = None
    report_date: date | None = None
    report_source: str | None = None
    cleanup_counts: dict[str, int] = field(default_factory=dict)
    completed_stages: list[str] = field(default_factory=list)
    report: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "limit_per_protocol": self.limit_per_protocol,
            "dry_run": self.dry_run,
            "record_counts": dict(sorted(self.record_counts.items())),
            "persisted_rows": dict(sorted(self.persisted_rows.items())),
            "fetch_failures": self.fetch_failures,
            "prompt_chars": self.prompt_chars,
            "estimated_prompt_tokens": self.estimated_prompt_tokens,
            "tokens_used": self.tokens_used,
            "model_used": self.model_used,
            "report_date": self.report_date.isoformat() if self.report_date else None,
            "report_source": self.report_source,
            "cleanup_counts": dict(sorted(self.cleanup_counts.items())),
            "completed_stages": self.completed_stages,
        }


@dataclass(slots=True)
class RunState:
    """Values handed from one stage to the next."""

    settings: Settings
    started_at: datetime
    limit_per_protocol: int
    cleanup: bool
    fetcher: ProtocolFetcher
    registry: SourceRegistry
    session_factory: Callable[[], ContextManager[Any]] | None
    raw_repo_factory: Callable[[Any], RawDataRepository]
    report_repo_factory: Callable[[Any], ReportRepository]
    synthesizer: ReportSynthesizer | None
    summary: PipelineSummary
    fetch: FetchResult | None = None
    summaries: dict[str, Any] = field(default_factory=dict)
    prompt: ReportPrompt | None = None
    completion: CompletionResult | None = None


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Fetch on-chain activity and generate the daily report")
    parser.add_argument(
        "--limit-per-protocol",
        type=int,
        default=settings.default_limit_per_protocol,
        help=f"Row budget per source ({MIN_LIMIT_PER_PROTOCOL}-{MAX_LIMIT_PER_PROTOCOL})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch, summarize and build the prompt without database writes or a completion call",
    )
    parser.add_argument(
        "--prompt-path",
        type=Path,
        default=None,
        help="Write the assembled report prompt to the specified path",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write JSON summary to the specified path",
    )
    parser.add_argument(
        "--cleanup",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Purge raw rows after the report is saved (defaults to CLEANUP_RAW_AFTER_REPORT)",
    )
    return parser.parse_args()


def make_args(**overrides: Any) -> argparse.Namespace:
    """Namespace equivalent to the CLI defaults, for programmatic callers."""

    values: dict[str, Any] = {
        "limit_per_protocol": None,
        "dry_run": False,
        "prompt_path": None,
        "summary_path": None,
        "cleanup": None,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def _resolve_limit(requested: int | None, settings: Settings) -> int:
    limit = requested if requested is not None else settings.default_limit_per_protocol
    if not MIN_LIMIT_PER_PROTOCOL <= limit <= MAX_LIMIT_PER_PROTOCOL:
        raise ValueError(
            f"limit_per_protocol must be between {MIN_LIMIT_PER_PROTOCOL} and "
            f"{MAX_LIMIT_PER_PROTOCOL}, got {limit}"
        )
    return limit


def _isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


T = TypeVar("T")


def _require(value: T | None, name: str) -> T:
    if value is None:
        raise RuntimeError(f"{name} is not available at this stage")
    return value


# ----------------------------------------------------------------------
# Stages


def _stage_fetch(state: RunState) -> None:
    state.fetch = state.fetcher.fetch_all_protocols(state.limit_per_protocol)
    state.summary.record_counts = state.fetch.record_counts()
    state.summary.fetch_failures = list(state.fetch.failures)
    if state.fetch.failures:
        logger.warning("{} source/entity fetches failed and were skipped", len(state.fetch.failures))


def _stage_persist(state: RunState) -> None:
    fetch = _require(state.fetch, "fetch result")
    session_factory = _require(state.session_factory, "session factory")
    with session_factory() as session:
        repo = state.raw_repo_factory(session)
        state.summary.persisted_rows = repo.save_fetch_result(fetch)


def _stage_summarize(state: RunState) -> None:
    fetch = _require(state.fetch, "fetch result")
    state.summaries["dex"] = summarize_dex(fetch.swaps())
    state.summaries["lending"] = summarize_lending(fetch.lending_markets(), fetch.lending_events())
    state.summaries["nft"] = summarize_nft(fetch.nft_entities())
    state.summaries["derivatives"] = summarize_derivatives(fetch.derivatives_entities())


def _stage_correlate(state: RunState) -> None:
    fetch = _require(state.fetch, "fetch result")
    state.summaries["cross"] = summarize_cross_protocol(
        fetch.swaps(),
        fetch.lending_events(),
        state.summaries["dex"],
        state.summaries["lending"],
    )


def _stage_compact(state: RunState) -> None:
    fetch = _require(state.fetch, "fetch result")
    protocols = {
        domain.value: sorted({source.protocol for source in state.registry.by_type(domain)})
        for domain in DomainType
    }
    state.prompt = build_report_prompt(
        state.summaries,
        state.settings.section_char_budgets,
        window_hours=state.settings.fetch_window_hours,
        fetched_at=_isoformat(fetch.fetched_at),
        protocols=protocols,
    )
    state.summary.prompt_chars = state.prompt.char_count
    state.summary.estimated_prompt_tokens = state.prompt.estimated_tokens
    logger.info(
        "Prompt size: {} chars (~{} tokens); sections={}",
        state.prompt.char_count,
        state.prompt.estimated_tokens,
        state.prompt.section_chars,
    )


def _stage_synthesize(state: RunState) -> None:
    prompt = _require(state.prompt, "report prompt")
    synthesizer = _require(state.synthesizer, "report synthesizer")
    completion = synthesizer.complete(prompt.text)
    state.completion = completion
    state.summary.tokens_used = completion.tokens_used
    state.summary.model_used = completion.model
    state.summary.report = completion.content


def _raw_data_summary(state: RunState) -> dict[str, Any]:
    fetch = _require(state.fetch, "fetch result")
    return {
        "metadata": {
            "fetchedAt": _isoformat(fetch.fetched_at),
            "timeframe": f"{state.settings.fetch_window_hours} hours",
            "limitPerProtocol": state.limit_per_protocol,
            "recordCounts": fetch.record_counts(),
            "failures": list(fetch.failures),
        },
        **state.summaries,
    }


def _stage_persist_report(state: RunState) -> None:
    completion = _require(state.completion, "completion")
    session_factory = _require(state.session_factory, "session factory")
    generated_at = datetime.now(timezone.utc)
    report_date = state.started_at.astimezone(timezone.utc).date()
    source = state.settings.report_source_tag
    content = build_report_content(
        completion, _raw_data_summary(state), generated_at=generated_at
    )
    with session_factory() as session:
        state.report_repo_factory(session).upsert_report(
            report_date=report_date,
            source=source,
            content=content,
            generated_at=generated_at,
            model_used=completion.model,
            tokens_used=completion.tokens_used,
        )
    state.summary.report_date = report_date
    state.summary.report_source = source


def _stage_cleanup(state: RunState) -> None:
    if not state.cleanup:
        logger.info("Raw data cleanup disabled; keeping raw rows")
        return
    session_factory = _require(state.session_factory, "session factory")
    cutoff = state.started_at - timedelta(hours=state.settings.raw_retention_hours)
    with session_factory() as session:
        state.summary.cleanup_counts = state.raw_repo_factory(session).purge_raw_data(cutoff)


STAGES: tuple[tuple[PipelineStage, Callable[[RunState], None]], ...] = (
    (PipelineStage.FETCH, _stage_fetch),
    (PipelineStage.PERSIST, _stage_persist),
    (PipelineStage.SUMMARIZE, _stage_summarize),
    (PipelineStage.CORRELATE, _stage_correlate),
    (PipelineStage.COMPACT, _stage_compact),
    (PipelineStage.SYNTHESIZE, _stage_synthesize),
    (PipelineStage.PERSIST_REPORT, _stage_persist_report),
    (PipelineStage.CLEANUP, _stage_cleanup),
)


def run_pipeline(
    args: argparse.Namespace,
    settings: Settings,
    *,
    now: datetime | None = None,
    registry: SourceRegistry | None = None,
    client_factory: ClientFactory | None = None,
    session_factory: Callable[[], ContextManager[Any]] | None = None,
    init_db_fn: Callable[[], None] = init_db,
    raw_repo_factory: Callable[[Any], RawDataRepository] | None = None,
    report_repo_factory: Callable[[Any], ReportRepository] | None = None,
    synthesizer: ReportSynthesizer | None = None,
) -> PipelineSummary:
    limit = _resolve_limit(getattr(args, "limit_per_protocol", None), settings)
    dry_run = bool(getattr(args, "dry_run", False))
    cleanup = getattr(args, "cleanup", None)
    if cleanup is None:
        cleanup = settings.cleanup_raw_after_report

    started_at = now or datetime.now(timezone.utc)
    summary = PipelineSummary(
        run_id=str(uuid4()),
        started_at=started_at,
        limit_per_protocol=limit,
        dry_run=dry_run,
    )

    if not dry_run:
        if synthesizer is None:
            if not settings.inference_api_key:
                raise PipelineStageError(
                    PipelineStage.SYNTHESIZE, "INFERENCE_API_KEY is not configured"
                )
            synthesizer = ReportSynthesizer.from_settings(settings)
        if session_factory is None:
            init_db_fn()
            session_factory = session_scope

    registry = registry or get_source_registry()
    client_factory = client_factory or default_client_factory(
        registry, timeout=settings.subgraph_timeout_seconds
    )
    fetcher = ProtocolFetcher(
        registry,
        client_factory=client_factory,
        config=FetchConfig.from_settings(settings),
        now=started_at,
    )
    batch_size = settings.upsert_batch_size
    state = RunState(
        settings=settings,
        started_at=started_at,
        limit_per_protocol=limit,
        cleanup=cleanup,
        fetcher=fetcher,
        registry=registry,
        session_factory=session_factory,
        raw_repo_factory=raw_repo_factory
        or (lambda session: RawDataRepository(session, batch_size=batch_size)),
        report_repo_factory=report_repo_factory or (lambda session: ReportRepository(session)),
        synthesizer=synthesizer,
        summary=summary,
    )

    logger.info(
        "Pipeline run {} starting limit_per_protocol={} dry_run={} sources={}",
        summary.run_id,
        limit,
        dry_run,
        len(registry),
    )
    for stage, step in STAGES:
        if dry_run and stage in _EFFECTFUL_STAGES:
            logger.info("Dry run: skipping stage {}", stage.value)
            continue
        logger.info("Stage {} started", stage.value)
        try:
            step(state)
        except Exception as exc:
            logger.exception("Stage {} failed", stage.value)
            raise PipelineStageError(stage, str(exc)) from exc
        summary.completed_stages.append(stage.value)
        logger.info("Stage {} completed", stage.value)

    if args.prompt_path and state.prompt is not None:
        _write_prompt(args.prompt_path, state.prompt)
        logger.info("Wrote report prompt to {}", args.prompt_path)

    logger.info(
        "Pipeline run {} completed. records={}, persisted={}, tokens={}",
        summary.run_id,
        summary.record_counts,
        sum(summary.persisted_rows.values()),
        summary.tokens_used,
    )

    if args.summary_path:
        _write_summary(args.summary_path, summary)
        logger.info("Wrote pipeline summary to {}", args.summary_path)

    return summary


def _write_prompt(path: Path, prompt: ReportPrompt) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(prompt.text, encoding="utf-8")


def _write_summary(path: Path, summary: PipelineSummary) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(summary.to_dict(), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    run_pipeline(args, settings)


if __name__ == "__main__":
    main()
