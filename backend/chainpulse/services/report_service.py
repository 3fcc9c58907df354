"""Chat-completion report synthesis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from loguru import logger
from openai import APIConnectionError, APIStatusError, OpenAI

from chainpulse.core.config import Settings

from .openai_client import get_openai_client


class ReportGenerationError(RuntimeError):
    """Raised when the completion API fails or returns no content."""

    def __init__(self, status: int | None, body: str) -> None:
        self.status = status
        self.body = body
        label = f"status={status}" if status is not None else "no status"
        super().__init__(f"Report completion failed ({label}): {body}")


@dataclass(slots=True)
class CompletionResult:
    content: str
    model: str
    tokens_used: int | None = None


class ReportSynthesizer:
    """Send one prompt to a chat-completion model and return its narrative."""

    def __init__(
        self,
        client: OpenAI,
        *,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 8000,
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, client: OpenAI | None = None) -> "ReportSynthesizer":
        return cls(
            client or get_openai_client(settings),
            model=settings.resolved_report_model,
            temperature=settings.report_temperature,
            max_tokens=settings.max_completion_tokens,
        )

    def complete(self, prompt: str) -> CompletionResult:
        logger.info(
            "Requesting report completion model={} max_tokens={}",
            self.model,
            self.max_tokens,
        )
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except APIStatusError as exc:
            body = exc.response.text if exc.response is not None else str(exc)
            raise ReportGenerationError(exc.status_code, body) from exc
        except APIConnectionError as exc:
            raise ReportGenerationError(None, str(exc)) from exc

        content = None
        if response.choices:
            message = response.choices[0].message
            content = message.content if message is not None else None
        if not content or not content.strip():
            raise ReportGenerationError(None, "completion returned empty content")

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None) if usage is not None else None
        logger.info("Report completion received chars={} tokens={}", len(content), tokens_used)
        return CompletionResult(content=content, model=self.model, tokens_used=tokens_used)


def build_report_content(
    result: CompletionResult,
    raw_summary: Mapping[str, Any],
    *,
    generated_at: datetime,
) -> dict[str, Any]:
    """Shape the stored report document: narrative plus the summary it was built from."""

    return {
        "report": result.content,
        "rawDataSummary": dict(raw_summary),
        "generatedAt": generated_at.isoformat().replace("+00:00", "Z"),
        "modelUsed": result.model,
        "tokensUsed": result.tokens_used,
    }


__all__ = [
    "CompletionResult",
    "ReportGenerationError",
    "ReportSynthesizer",
    "build_report_content",
]
