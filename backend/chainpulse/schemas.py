from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .core.config import MAX_LIMIT_PER_PROTOCOL, MIN_LIMIT_PER_PROTOCOL


class FetchAndAnalyzeInput(BaseModel):
    limit_per_protocol: int = Field(
        default=MAX_LIMIT_PER_PROTOCOL,
        alias="limitPerProtocol",
        ge=MIN_LIMIT_PER_PROTOCOL,
        le=MAX_LIMIT_PER_PROTOCOL,
        description="Row budget per indexed source",
    )

    model_config = ConfigDict(populate_by_name=True)


class InvokeRequest(BaseModel):
    input: FetchAndAnalyzeInput = Field(default_factory=FetchAndAnalyzeInput)


class RunOutput(BaseModel):
    report: str | None = None
    report_date: date | None = Field(default=None, alias="reportDate")
    source: str | None = None
    model_used: str | None = Field(default=None, alias="modelUsed")
    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    record_counts: dict[str, int] = Field(default_factory=dict, alias="recordCounts")
    fetch_failures: list[dict[str, str]] = Field(default_factory=list, alias="fetchFailures")
    run_id: str = Field(alias="runId")

    model_config = ConfigDict(populate_by_name=True)


class InvokeResponse(BaseModel):
    output: RunOutput


class StageError(BaseModel):
    error: str
    stage: str


class Report(BaseModel):
    report_date: date
    source: str
    report_content: dict[str, Any]
    generated_at: datetime
    model_used: str | None = None
    tokens_used: int | None = None

    model_config = {"from_attributes": True}
