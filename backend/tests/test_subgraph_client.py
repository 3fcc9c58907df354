from __future__ import annotations

import json

import httpx
import pytest

from ingestion.client import SubgraphClient, SubgraphQueryError


def _client(handler) -> SubgraphClient:
    return SubgraphClient(
        "https://subgraphs.test/abc",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_query_returns_data_payload():
    """Verify the client posts the query and unwraps ``data``."""

    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"swaps": [{"id": "1"}]}})

    with _client(handler) as client:
        data = client.query("{ swaps { id } }", variables={"first": 1})

    assert data == {"swaps": [{"id": "1"}]}
    assert seen["url"] == "https://subgraphs.test/abc"
    assert seen["body"] == {"query": "{ swaps { id } }", "variables": {"first": 1}}


def test_query_raises_on_graphql_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "Type `Borrow` has no field `account`"}]})

    with _client(handler) as client, pytest.raises(SubgraphQueryError) as excinfo:
        client.query("{ borrows { account { id } } }")

    assert excinfo.value.messages == ["Type `Borrow` has no field `account`"]
    assert excinfo.value.endpoint == "https://subgraphs.test/abc"


def test_query_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with _client(handler) as client, pytest.raises(httpx.HTTPStatusError):
        client.query("{ swaps { id } }")


def test_query_rejects_non_object_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2, 3])

    with _client(handler) as client, pytest.raises(SubgraphQueryError):
        client.query("{ swaps { id } }")
