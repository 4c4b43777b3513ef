"""
Widget Loader Tests (Unit)
==========================

WHAT: Unit tests for the per-widget fetch-and-process cycle.
WHY: Each widget is its own error boundary: a failing widget keeps its
     last-known-good data and never affects its siblings, and responses that
     arrive after an edit are discarded.

NOTE:
The aggregation endpoints are simulated with `httpx.MockTransport`; table
names come from a plain function instead of the database resolver.

REFERENCES:
- backend/dashboard_studio/services/widget_loader.py
"""

import asyncio
import json

import httpx

from dashboard_studio.aggregation.errors import ResolutionError
from dashboard_studio.aggregation.model import DashboardLayout, Filter
from dashboard_studio.services.aggregation_client import AggregationClient
from dashboard_studio.services.widget_loader import load_widget, refresh_all
from dashboard_studio.services.widget_store import WidgetStore

LAYOUT = {
    "widgets": [
        {
            "id": "bar",
            "type": "bar",
            "aggregationConfig": {
                "enabled": True,
                "dimension": "region",
                "metrics": [{"field": "monto", "func": "SUM", "alias": "ventas"}],
            },
        },
        {
            "id": "broken",
            "type": "line",
            "aggregationConfig": {
                "enabled": True,
                "dimension": "mes",
                "metrics": [{"field": "nope", "func": "SUM", "alias": "x"}],
            },
        },
        {"id": "note", "type": "text", "content": "Hola"},
        {"id": "detail", "type": "table", "excludeGlobalFilters": True},
    ]
}


def _store() -> WidgetStore:
    return WidgetStore.from_layout(DashboardLayout.model_validate(LAYOUT))


def _table_name(widget) -> str:
    return "etl_output.ventas"


class FakeAggregationService:
    """Answers like the real endpoints and records every body it receives."""

    def __init__(self):
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append((request.url.path, body))
        if request.url.path.endswith("/raw-data"):
            return httpx.Response(200, json=[{"id": 1, "region": "Lima"}])
        metric = body["metrics"][0]
        if metric["field"] == "nope":
            return httpx.Response(400, json={"error": "column nope does not exist"})
        return httpx.Response(200, json=[{"region": "Lima", "ventas": 10}, {"region": "Cusco", "ventas": 4}])

    def client(self) -> AggregationClient:
        return AggregationClient("http://agg.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(self)))


def test_load_widget_applies_result() -> None:
    service = FakeAggregationService()
    store = _store()

    outcome = asyncio.run(load_widget(store, "bar", service.client(), _table_name))

    assert outcome.status == "ok"
    widget = store.get("bar")
    assert widget.config["labels"] == ["Lima", "Cusco"]
    assert widget.rows[0] == {"region": "Lima", "ventas": 10}
    assert widget.columns[0] == {"name": "region", "type": "string"}
    assert widget.is_loading is False


def test_non_data_widgets_are_skipped() -> None:
    outcome = asyncio.run(load_widget(_store(), "note", FakeAggregationService().client(), _table_name))
    assert outcome.status == "skipped"


def test_resolution_failure_keeps_previous_data() -> None:
    service = FakeAggregationService()
    store = _store()
    asyncio.run(load_widget(store, "bar", service.client(), _table_name))

    def no_table(widget):
        raise ResolutionError(message="There is no completed ETL run for this dashboard.", widget_id=widget.id)

    outcome = asyncio.run(load_widget(store, "bar", service.client(), no_table))

    assert outcome.status == "error"
    assert outcome.category == "resolution"
    assert outcome.message == "There is no completed ETL run for this dashboard."
    widget = store.get("bar")
    assert widget.config["labels"] == ["Lima", "Cusco"]
    assert widget.is_loading is False


def test_empty_result_is_reported_as_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    client = AggregationClient("http://agg.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    store = _store()
    outcome = asyncio.run(load_widget(store, "bar", client, _table_name))

    assert outcome.status == "empty"
    assert outcome.warnings == ["The query returned no data."]
    assert store.get("bar").config == {"labels": [], "datasets": []}


def test_edit_during_fetch_discards_the_response() -> None:
    store = _store()

    def handler(request: httpx.Request) -> httpx.Response:
        store.update("bar", {"title": "Edited while loading"})
        return httpx.Response(200, json=[{"region": "Lima", "ventas": 1}])

    client = AggregationClient("http://agg.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    outcome = asyncio.run(load_widget(store, "bar", client, _table_name))

    assert outcome.status == "stale"
    assert store.get("bar").rows is None


def test_refresh_all_isolates_failures() -> None:
    service = FakeAggregationService()
    store = _store()
    global_filters = [Filter(field="fecha", operator="YEAR", value=2024)]

    outcomes = asyncio.run(refresh_all(store, service.client(), _table_name, global_filters))

    assert [(o.widget_id, o.status) for o in outcomes] == [
        ("bar", "ok"),
        ("broken", "error"),
        ("detail", "ok"),
    ]
    assert outcomes[1].category == "transport"
    assert outcomes[1].message == "column nope does not exist"
    assert store.get("broken").is_loading is False

    bodies = dict(service.bodies)
    year_filter = {"field": "fecha", "operator": "YEAR", "value": 2024}
    assert year_filter in bodies["/api/dashboard/aggregate-data"]["filters"]
    # The table widget opted out of global filters
    assert bodies["/api/dashboard/raw-data"]["filters"] == []
    assert bodies["/api/dashboard/raw-data"]["limit"] == 500


def test_refresh_all_survives_unexpected_exceptions() -> None:
    service = FakeAggregationService()
    store = _store()

    def flaky(widget):
        if widget.id == "detail":
            raise RuntimeError("boom")
        return "etl_output.ventas"

    outcomes = asyncio.run(refresh_all(store, service.client(), flaky))

    statuses = {o.widget_id: o.status for o in outcomes}
    assert statuses["bar"] == "ok"
    assert statuses["detail"] == "error"
    assert store.get("detail").is_loading is False


def test_unexpected_processing_error_is_contained(monkeypatch) -> None:
    service = FakeAggregationService()
    store = _store()
    asyncio.run(load_widget(store, "bar", service.client(), _table_name))

    def exploding_processor(*args, **kwargs):
        raise ArithmeticError("quantize overflow")

    monkeypatch.setattr("dashboard_studio.services.widget_loader.process_results", exploding_processor)
    outcome = asyncio.run(load_widget(store, "bar", service.client(), _table_name))

    assert outcome.status == "error"
    assert outcome.category is None
    assert outcome.message == "quantize overflow"
    widget = store.get("bar")
    assert widget.is_loading is False
    # Last-known-good data survives
    assert widget.config["labels"] == ["Lima", "Cusco"]


def test_large_aggregate_with_high_precision_loads() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"region": "Lima", "ventas": 123456789012.5}])

    layout = DashboardLayout.model_validate({
        "widgets": [{
            "id": "big",
            "type": "bar",
            "aggregationConfig": {
                "enabled": True,
                "dimension": "region",
                "metrics": [{"field": "monto", "func": "SUM", "alias": "ventas", "precision": 20}],
            },
        }]
    })
    store = WidgetStore.from_layout(layout)
    client = AggregationClient("http://agg.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    outcome = asyncio.run(load_widget(store, "big", client, _table_name))

    assert outcome.status == "ok"
    assert store.get("big").config["datasets"][0]["data"] == [123456789012.5]
