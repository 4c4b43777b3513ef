"""Widget fetch-and-process cycle.

WHAT:
    Loads data for one widget (or every data widget of a dashboard):
        resolve table -> assemble request -> call endpoint -> process rows
        -> apply to the WidgetStore (generation-checked)

WHY:
    This is the per-widget error boundary. Resolution, shape and transport
    failures, and any unexpected exception, are caught here and reported as
    a LoadOutcome; the widget keeps its last-known-good data and only its
    loading flag is cleared. One failing widget never affects its siblings.

CONCURRENCY:
    refresh_all() starts one asyncio task per data widget and gathers them.
    There are no locks: the store's generation counter discards responses
    that arrive after a newer load started.

REFERENCES:
    - dashboard_studio/aggregation/request.py (assemble_request)
    - dashboard_studio/aggregation/results.py (process_results)
    - dashboard_studio/services/widget_store.py (begin_load / apply_load)
"""

import asyncio
import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Dict, Iterable, List, Optional

from dashboard_studio.aggregation.errors import DashboardError
from dashboard_studio.aggregation.model import Filter, Widget
from dashboard_studio.aggregation.request import assemble_request
from dashboard_studio.aggregation.results import process_results
from dashboard_studio.services.aggregation_client import AggregationClient
from dashboard_studio.services.widget_store import WidgetStore

logger = logging.getLogger(__name__)

# Widget -> "schema.table"; raises ResolutionError when there is none
TableNameResolver = Callable[[Widget], str]


@dataclass
class LoadOutcome:
    """Result of loading one widget.

    status:
        ok       data applied
        empty    query returned no rows; empty state applied
        error    resolution/shape/transport or unexpected failure; previous
                 data kept
        stale    a newer load (or edit) superseded this one; nothing applied
        skipped  widget has no data to load (text, image, filter)
    """
    widget_id: str
    status: str
    message: Optional[str] = None
    category: Optional[str] = None
    warnings: List[str] = dataclass_field(default_factory=list)
    generation: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status in ("ok", "empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "widget_id": self.widget_id,
            "status": self.status,
            "message": self.message,
            "category": self.category,
            "warnings": list(self.warnings),
        }


async def load_widget(
    store: WidgetStore,
    widget_id: str,
    client: AggregationClient,
    table_name_for: TableNameResolver,
    global_filters: Optional[Iterable[Filter]] = None,
) -> LoadOutcome:
    """Run the fetch-and-process cycle for one widget.

    Raises:
        WidgetNotFoundError: the widget is not in the store
    """
    widget = store.get(widget_id)
    if not widget.is_data_widget:
        return LoadOutcome(widget_id=widget_id, status="skipped")

    generation = store.begin_load(widget_id)
    config = widget.aggregation_config
    source = widget.source

    try:
        table_name = table_name_for(widget)
        request = assemble_request(
            config,
            list(global_filters or []),
            widget.exclude_global_filters,
            table_name,
        )
        logger.info(f"[LOADER] Widget {widget_id} (gen {generation}) -> {request.endpoint} on {table_name}")
        rows = await client.fetch(request)
        result = process_results(
            rows,
            config,
            widget.type,
            label_field=source.label_field if source else None,
            value_fields=source.value_fields if source else None,
            color=widget.color,
            limit=request.limit,
            widget_id=widget_id,
        )
    except DashboardError as e:
        logger.error(f"[LOADER] Widget {widget_id} failed: {e}")
        store.fail_load(widget_id, generation)
        return LoadOutcome(
            widget_id=widget_id,
            status="error",
            message=e.message,
            category=e.category.value,
            generation=generation,
        )
    except Exception as e:
        logger.exception(f"[LOADER] Unexpected error loading widget {widget_id}: {e!r}")
        store.fail_load(widget_id, generation)
        return LoadOutcome(
            widget_id=widget_id,
            status="error",
            message=str(e) or e.__class__.__name__,
            generation=generation,
        )

    if not store.apply_load(widget_id, generation, result):
        return LoadOutcome(widget_id=widget_id, status="stale", generation=generation)

    return LoadOutcome(
        widget_id=widget_id,
        status="empty" if result.is_empty else "ok",
        warnings=result.warnings,
        generation=generation,
    )


async def refresh_all(
    store: WidgetStore,
    client: AggregationClient,
    table_name_for: TableNameResolver,
    global_filters: Optional[Iterable[Filter]] = None,
) -> List[LoadOutcome]:
    """Load every data widget concurrently; outcomes are in grid order."""
    filters = list(global_filters or [])
    widget_ids = [widget.id for widget in store.data_widgets()]
    logger.info(f"[LOADER] Refreshing {len(widget_ids)} widget(s)")

    results = await asyncio.gather(
        *(load_widget(store, widget_id, client, table_name_for, filters) for widget_id in widget_ids),
        return_exceptions=True,
    )

    outcomes = []
    for widget_id, result in zip(widget_ids, results):
        if isinstance(result, BaseException):
            logger.error(f"[LOADER] Unexpected error loading widget {widget_id}: {result!r}")
            if widget_id in store:
                store.get(widget_id).is_loading = False
            outcomes.append(LoadOutcome(widget_id=widget_id, status="error", message=str(result)))
        else:
            outcomes.append(result)
    return outcomes
