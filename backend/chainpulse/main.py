from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, Callable

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from loguru import logger

from . import schemas
from .core.config import MAX_LIMIT_PER_PROTOCOL, MIN_LIMIT_PER_PROTOCOL, get_settings
from .db import get_db, init_db
from .repositories import ReportRepository
from pipelines.daily_run import PipelineStageError, PipelineSummary, make_args, run_pipeline

PipelineRunner = Callable[[int], PipelineSummary]


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialize database tables when the API boots."""

    init_db()
    yield


app = FastAPI(
    title="Chainpulse API",
    version="0.1.0",
    debug=get_settings().debug,
    lifespan=lifespan,
)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _pipeline_runner() -> PipelineRunner:
    """Provide a callable that runs the full report pipeline for one limit."""

    settings = get_settings()

    def _run(limit_per_protocol: int) -> PipelineSummary:
        return run_pipeline(make_args(limit_per_protocol=limit_per_protocol), settings)

    return _run


def _report_repository(db=Depends(get_db)) -> ReportRepository:
    """Provide the report repository wired with a SQLAlchemy session."""

    return ReportRepository(db)


def _invoke(limit_per_protocol: int, runner: PipelineRunner) -> schemas.InvokeResponse | JSONResponse:
    try:
        summary = runner(limit_per_protocol)
    except PipelineStageError as exc:
        logger.error("Pipeline failed at stage {}: {}", exc.stage.value, exc)
        return JSONResponse(
            status_code=500,
            content=schemas.StageError(error=str(exc), stage=exc.stage.value).model_dump(),
        )
    return schemas.InvokeResponse(
        output=schemas.RunOutput(
            report=summary.report,
            report_date=summary.report_date,
            source=summary.report_source,
            model_used=summary.model_used,
            tokens_used=summary.tokens_used,
            record_counts=summary.record_counts,
            fetch_failures=summary.fetch_failures,
            run_id=summary.run_id,
        )
    )


@app.post(
    "/entrypoints/fetch-and-analyze/invoke",
    response_model=schemas.InvokeResponse,
    responses={500: {"model": schemas.StageError}},
    tags=["entrypoints"],
)
def invoke_fetch_and_analyze(
    request: schemas.InvokeRequest | None = None,
    runner: PipelineRunner = Depends(_pipeline_runner),
):
    payload = request or schemas.InvokeRequest()
    return _invoke(payload.input.limit_per_protocol, runner)


@app.get(
    "/entrypoints/fetch-and-analyze/invoke",
    response_model=schemas.InvokeResponse,
    responses={500: {"model": schemas.StageError}},
    tags=["entrypoints"],
)
def invoke_fetch_and_analyze_get(
    limit_per_protocol: Annotated[
        int,
        Query(
            alias="limitPerProtocol",
            ge=MIN_LIMIT_PER_PROTOCOL,
            le=MAX_LIMIT_PER_PROTOCOL,
            description="Row budget per indexed source",
        ),
    ] = MAX_LIMIT_PER_PROTOCOL,
    runner: PipelineRunner = Depends(_pipeline_runner),
):
    return _invoke(limit_per_protocol, runner)


@app.get("/reports/latest", response_model=schemas.Report | None, tags=["reports"])
def latest_report(
    source: Annotated[str | None, Query(description="Report source tag")] = None,
    repo: ReportRepository = Depends(_report_repository),
):
    return repo.latest(source or get_settings().report_source_tag)


@app.get("/reports/{report_date}", response_model=schemas.Report, tags=["reports"])
def get_report(
    report_date: date,
    source: Annotated[str | None, Query(description="Report source tag")] = None,
    repo: ReportRepository = Depends(_report_repository),
):
    record = repo.get(report_date, source or get_settings().report_source_tag)
    if record is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return record

