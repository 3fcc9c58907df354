from __future__ import annotations

from typing import Any, Mapping

import httpx
from loguru import logger


class SubgraphQueryError(RuntimeError):
    """Raised when a subgraph answers with a GraphQL ``errors`` payload."""

    def __init__(self, endpoint: str, messages: list[str]) -> None:
        self.endpoint = endpoint
        self.messages = messages
        super().__init__(f"Subgraph query failed: {'; '.join(messages) or 'unknown error'}")


class SubgraphClient:
    """Thin wrapper around a GraphQL subgraph endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.client = http_client or httpx.Client(timeout=timeout)

    def query(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = dict(variables)
        logger.debug("Subgraph POST {} ({} chars)", self.endpoint, len(query))
        response = self.client.post(self.endpoint, json=body)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise SubgraphQueryError(self.endpoint, ["response body is not a JSON object"])

        errors = payload.get("errors")
        if errors:
            messages = [
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            ]
            raise SubgraphQueryError(self.endpoint, messages)

        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SubgraphClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["SubgraphClient", "SubgraphQueryError"]
