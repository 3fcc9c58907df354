from __future__ import annotations

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from chainpulse.schemas import FetchAndAnalyzeInput, InvokeRequest, Report, RunOutput


def test_invoke_request_defaults_to_max_limit():
    """Verify an empty request falls back to the largest row budget."""
    assert InvokeRequest().input.limit_per_protocol == 12_000
    assert InvokeRequest.model_validate({}).input.limit_per_protocol == 12_000


def test_fetch_input_accepts_alias_and_field_name():
    assert FetchAndAnalyzeInput.model_validate({"limitPerProtocol": 75}).limit_per_protocol == 75
    assert FetchAndAnalyzeInput(limit_per_protocol=80).limit_per_protocol == 80


@pytest.mark.parametrize("limit", [49, 12_001])
def test_fetch_input_rejects_out_of_range(limit):
    with pytest.raises(ValidationError):
        FetchAndAnalyzeInput.model_validate({"limitPerProtocol": limit})


def test_run_output_dumps_camel_case():
    output = RunOutput(report="# Daily", report_date=date(2024, 5, 1), run_id="run-1", tokens_used=5)

    dumped = output.model_dump(by_alias=True, mode="json")

    assert dumped["reportDate"] == "2024-05-01"
    assert dumped["tokensUsed"] == 5
    assert dumped["runId"] == "run-1"
    assert dumped["fetchFailures"] == []


def test_report_reads_orm_attributes():
    """Verify the report schema validates from ORM-style objects."""
    record = SimpleNamespace(
        report_date=date(2024, 5, 1),
        source="graph",
        report_content={"report": "# Daily"},
        generated_at=datetime(2024, 5, 1, 12, tzinfo=timezone.utc),
        model_used=None,
        tokens_used=None,
    )

    report = Report.model_validate(record)

    assert report.source == "graph"
    assert report.report_content["report"] == "# Daily"
