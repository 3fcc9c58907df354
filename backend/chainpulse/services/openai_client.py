"""Helpers for constructing OpenAI-compatible inference clients."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from openai import OpenAI

from chainpulse.core.config import Settings


@lru_cache(maxsize=4)
def _client_cache(
    api_key: str,
    base_url: str | None,
    timeout: float,
    max_retries: int,
) -> OpenAI:
    kwargs: dict[str, Any] = {
        "api_key": api_key,
        "timeout": timeout,
        "max_retries": max_retries,
    }
    if base_url:
        kwargs["base_url"] = base_url
    return OpenAI(**kwargs)


def get_openai_client(settings: Settings) -> OpenAI:
    """Build or reuse a chat-completions client for the supplied settings."""

    if not settings.inference_api_key:
        raise ValueError("INFERENCE_API_KEY is not configured")
    base_url = str(settings.inference_base_url) if settings.inference_base_url else None
    return _client_cache(
        settings.inference_api_key,
        base_url,
        float(settings.completion_timeout_seconds),
        settings.completion_max_retries,
    )


__all__ = ["get_openai_client"]
