"""
Aggregation Client Tests (Unit)
===============================

WHAT: Unit tests for the aggregation endpoint HTTP client.
WHY: Every transport failure must surface as a TransportError carrying a
     user-facing message, never as a raw httpx exception.

NOTE:
Uses `httpx.MockTransport`; no network access and no database required.

REFERENCES:
- backend/dashboard_studio/services/aggregation_client.py
"""

import asyncio
import json

import httpx
import pytest

from dashboard_studio.aggregation.errors import ErrorCategory, TransportError
from dashboard_studio.aggregation.model import AggregationConfig
from dashboard_studio.aggregation.request import assemble_distinct_values_request, assemble_request
from dashboard_studio.services.aggregation_client import AggregationClient

BASE_URL = "http://agg.test"


def _client(handler) -> AggregationClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AggregationClient(base_url=BASE_URL + "/", http_client=http_client)


def _aggregate_request():
    config = AggregationConfig.model_validate({
        "enabled": True,
        "dimension": "region",
        "metrics": [{"field": "monto", "func": "SUM", "alias": "ventas"}],
    })
    return assemble_request(config, [], False, "etl_output.ventas")


def test_fetch_posts_assembled_body_to_endpoint() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"region": "Lima", "ventas": 10}])

    request = _aggregate_request()
    rows = asyncio.run(_client(handler).fetch(request))

    assert rows == [{"region": "Lima", "ventas": 10}]
    assert seen["url"] == f"{BASE_URL}/api/dashboard/aggregate-data"
    assert seen["body"] == request.to_payload()


def test_error_body_message_is_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "column \"monto\" does not exist"})

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_client(handler).fetch(_aggregate_request()))

    error = exc_info.value
    assert error.category == ErrorCategory.TRANSPORT
    assert error.status_code == 500
    assert error.message == "column \"monto\" does not exist"


def test_error_without_body_gets_generic_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not here")

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_client(handler).fetch(_aggregate_request()))
    assert exc_info.value.message == "Aggregation request failed (404)."


def test_network_failures_become_transport_errors() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_client(timeout).fetch(_aggregate_request()))
    assert exc_info.value.message == "The aggregation service timed out."

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_client(refused).fetch(_aggregate_request()))
    assert exc_info.value.message == "Could not reach the aggregation service."


def test_non_list_payload_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"rows": []})

    with pytest.raises(TransportError):
        asyncio.run(_client(handler).fetch(_aggregate_request()))


def test_distinct_values_are_flattened() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/dashboard/distinct-values"
        return httpx.Response(200, json=[{"value": 2023}, {"value": 2024}, "2025"])

    request = assemble_distinct_values_request("etl_output.ventas", "fecha", transform="YEAR")
    assert asyncio.run(_client(handler).distinct_values(request)) == [2023, 2024, "2025"]


def test_injected_client_is_not_closed() -> None:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))

    async def scenario():
        async with AggregationClient(base_url=BASE_URL, http_client=http_client) as client:
            await client.fetch(_aggregate_request())
        return http_client.is_closed

    assert asyncio.run(scenario()) is False
