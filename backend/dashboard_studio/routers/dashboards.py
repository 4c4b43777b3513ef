"""Dashboard layout, widget and data-loading endpoints.

WHAT:
    HTTP surface of the dashboard studio:
    - layout and global filters (load/save)
    - widget add / patch / remove / move
    - widget load and full refresh (fetch-and-process cycle)
    - saved metric templates
    - distinct values for filter dropdowns

WHY:
    Every endpoint follows the same pattern: load the dashboard row, build a
    WidgetStore from its layout, apply one operation, persist when the layout
    changed. Runtime widget data (rows, chart config) is returned to the caller
    but never persisted.

REFERENCES:
    - dashboard_studio/services/widget_store.py
    - dashboard_studio/services/widget_loader.py
    - dashboard_studio/services/dashboard_repository.py
"""

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .. import schemas
from ..aggregation.errors import DashboardError, ErrorCategory
from ..aggregation.model import DashboardLayout, Widget
from ..aggregation.request import assemble_distinct_values_request
from ..database import get_db
from ..deps import Settings, get_aggregation_client, get_settings
from ..models import Dashboard
from ..services.aggregation_client import AggregationClient
from ..services.dashboard_repository import DashboardRepository
from ..services.saved_metrics import SavedMetricLibrary
from ..services.table_resolver import resolve_table_name
from ..services.widget_loader import load_widget, refresh_all
from ..services.widget_store import WidgetStore

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/dashboards",
    tags=["Dashboards"],
    responses={
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
        502: {"model": schemas.ErrorResponse, "description": "Aggregation service error"},
    }
)


_STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.RESOLUTION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.TRANSPORT: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(error: DashboardError) -> HTTPException:
    code = _STATUS_BY_CATEGORY.get(error.category, status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=error.message)


def _load(db: Session, dashboard_id: str) -> Tuple[DashboardRepository, Dashboard, DashboardLayout, WidgetStore]:
    repo = DashboardRepository(db)
    try:
        dashboard = repo.get(dashboard_id)
        layout, store = repo.load_store(dashboard)
    except DashboardError as e:
        raise _http_error(e)
    return repo, dashboard, layout, store


def _table_resolver(db: Session, dashboard: Dashboard, settings: Settings):
    return lambda widget: resolve_table_name(db, dashboard, widget, settings.DEFAULT_ETL_SCHEMA)


# =============================================================================
# LAYOUT & GLOBAL FILTERS
# =============================================================================

@router.get(
    "/{dashboard_id}",
    response_model=schemas.DashboardOut,
    summary="Get dashboard",
)
def get_dashboard(dashboard_id: str, db: Session = Depends(get_db)):
    """Return the persisted layout (widgets in grid order) and global filters."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    document = layout.to_document()
    document["widgets"] = store.to_documents()
    return schemas.DashboardOut(
        id=dashboard.id,
        title=dashboard.title,
        etl_id=dashboard.etl_id,
        layout=document,
        global_filters=[f.to_document() for f in repo.load_global_filters(dashboard)],
    )


@router.put(
    "/{dashboard_id}/layout",
    response_model=schemas.LayoutSaved,
    summary="Save layout",
    description="""
    Replace the layout document. Widgets are re-indexed by gridOrder and
    runtime fields (rows, config, columns, isLoading) are stripped.
    """
)
def save_layout(
    dashboard_id: str,
    document: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    repo, dashboard, _, _ = _load(db, dashboard_id)
    try:
        layout = DashboardLayout.model_validate(document)
        store = WidgetStore.from_layout(layout)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except DashboardError as e:
        raise _http_error(e)
    return schemas.LayoutSaved(layout=repo.save_layout(dashboard, layout, store))


@router.put(
    "/{dashboard_id}/global-filters",
    response_model=schemas.GlobalFiltersOut,
    summary="Save global filters",
)
def save_global_filters(
    dashboard_id: str,
    payload: schemas.GlobalFiltersIn,
    db: Session = Depends(get_db),
):
    repo, dashboard, _, _ = _load(db, dashboard_id)
    return schemas.GlobalFiltersOut(filters=repo.save_global_filters(dashboard, payload.filters))


# =============================================================================
# WIDGETS
# =============================================================================

@router.get("/{dashboard_id}/widgets", response_model=schemas.WidgetListOut, summary="List widgets")
def list_widgets(dashboard_id: str, db: Session = Depends(get_db)):
    _, _, _, store = _load(db, dashboard_id)
    return schemas.WidgetListOut(widgets=store.to_documents())


@router.post(
    "/{dashboard_id}/widgets",
    response_model=schemas.WidgetOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add widget",
)
def add_widget(
    dashboard_id: str,
    document: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    """Append a widget at the end of the grid. Duplicate ids are rejected (409)."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    try:
        widget = store.add(Widget.model_validate(document))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except DashboardError as e:
        raise _http_error(e)
    repo.save_layout(dashboard, layout, store)
    return schemas.WidgetOut(widget=store.to_documents()[widget.grid_order])


@router.patch(
    "/{dashboard_id}/widgets/{widget_id}",
    response_model=schemas.WidgetOut,
    summary="Update widget",
)
def update_widget(
    dashboard_id: str,
    widget_id: str,
    patch: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    """Merge a partial widget document. `id` and `gridOrder` are ignored."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    try:
        widget = store.update(widget_id, patch)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except DashboardError as e:
        raise _http_error(e)
    repo.save_layout(dashboard, layout, store)
    return schemas.WidgetOut(widget=store.to_documents()[widget.grid_order])


@router.delete(
    "/{dashboard_id}/widgets/{widget_id}",
    response_model=schemas.WidgetListOut,
    summary="Remove widget",
)
def remove_widget(dashboard_id: str, widget_id: str, db: Session = Depends(get_db)):
    repo, dashboard, layout, store = _load(db, dashboard_id)
    try:
        store.remove(widget_id)
    except DashboardError as e:
        raise _http_error(e)
    repo.save_layout(dashboard, layout, store)
    return schemas.WidgetListOut(widgets=store.to_documents())


@router.post(
    "/{dashboard_id}/widgets/{widget_id}/move",
    response_model=schemas.WidgetListOut,
    summary="Move widget up or down",
)
def move_widget(
    dashboard_id: str,
    widget_id: str,
    payload: schemas.WidgetMove,
    db: Session = Depends(get_db),
):
    """Swap a widget with its neighbour; a no-op at either end of the grid."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    try:
        moved = store.reorder(widget_id, payload.direction)
    except DashboardError as e:
        raise _http_error(e)
    if moved:
        repo.save_layout(dashboard, layout, store)
    return schemas.WidgetListOut(widgets=store.to_documents())


# =============================================================================
# DATA LOADING
# =============================================================================

@router.post(
    "/{dashboard_id}/widgets/{widget_id}/load",
    response_model=schemas.LoadOutcomeOut,
    summary="Load widget data",
    description="""
    Run the fetch-and-process cycle for one widget: resolve its table,
    assemble the aggregation request with the dashboard's global filters,
    call the aggregation service and shape the rows for the widget type.

    Failures are reported in the outcome (status "error"), not as HTTP errors.
    """
)
async def load_widget_data(
    dashboard_id: str,
    widget_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: AggregationClient = Depends(get_aggregation_client),
):
    repo, dashboard, _, store = _load(db, dashboard_id)
    try:
        outcome = await load_widget(
            store,
            widget_id,
            client,
            _table_resolver(db, dashboard, settings),
            repo.load_global_filters(dashboard),
        )
    except DashboardError as e:
        raise _http_error(e)
    return schemas.LoadOutcomeOut(**outcome.to_dict(), widget=store.get(widget_id).to_document())


@router.post(
    "/{dashboard_id}/refresh",
    response_model=schemas.RefreshOut,
    summary="Refresh all widgets",
)
async def refresh_dashboard(
    dashboard_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: AggregationClient = Depends(get_aggregation_client),
):
    """Load every data widget concurrently; each widget reports its own outcome."""
    repo, dashboard, _, store = _load(db, dashboard_id)
    outcomes = await refresh_all(
        store,
        client,
        _table_resolver(db, dashboard, settings),
        repo.load_global_filters(dashboard),
    )
    return schemas.RefreshOut(outcomes=[
        schemas.LoadOutcomeOut(**outcome.to_dict(), widget=store.get(outcome.widget_id).to_document())
        for outcome in outcomes
    ])


@router.post(
    "/{dashboard_id}/distinct-values",
    response_model=schemas.DistinctValuesOut,
    summary="Distinct values for a filter dropdown",
)
async def distinct_values(
    dashboard_id: str,
    payload: schemas.DistinctValuesIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: AggregationClient = Depends(get_aggregation_client),
):
    _, dashboard, _, store = _load(db, dashboard_id)
    try:
        widget = store.get(payload.widget_id) if payload.widget_id else None
        table_name = resolve_table_name(db, dashboard, widget, settings.DEFAULT_ETL_SCHEMA)
        request = assemble_distinct_values_request(
            table_name,
            payload.field,
            filters=payload.filters,
            limit=payload.limit,
            order=payload.order,
            transform=payload.transform,
        )
        values = await client.distinct_values(request)
    except DashboardError as e:
        raise _http_error(e)
    return schemas.DistinctValuesOut(values=values)


# =============================================================================
# SAVED METRICS
# =============================================================================

@router.post(
    "/{dashboard_id}/saved-metrics",
    response_model=schemas.SavedMetricOut,
    summary="Save metric as template",
)
def save_metric_template(
    dashboard_id: str,
    payload: schemas.SavedMetricIn,
    db: Session = Depends(get_db),
):
    """Save a metric under a name; an existing template with the same name is replaced."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    library = SavedMetricLibrary(layout.saved_metrics)
    try:
        saved = library.save_template(payload.name, payload.metric)
    except DashboardError as e:
        raise _http_error(e)
    layout.saved_metrics = library.list()
    repo.save_layout(dashboard, layout, store)
    return schemas.SavedMetricOut(saved_metric=saved.to_document())


@router.post(
    "/{dashboard_id}/saved-metrics/{saved_id}/instantiate",
    response_model=schemas.MetricOut,
    summary="Instantiate saved metric",
)
def instantiate_saved_metric(
    dashboard_id: str,
    saved_id: str,
    payload: Optional[schemas.InstantiateSavedMetricIn] = None,
    db: Session = Depends(get_db),
):
    """Clone a template with a fresh id, optionally appending it to a widget."""
    repo, dashboard, layout, store = _load(db, dashboard_id)
    library = SavedMetricLibrary(layout.saved_metrics)
    widget_id = payload.widget_id if payload else None
    try:
        if widget_id:
            metric = library.add_to_widget(store, widget_id, saved_id)
        else:
            metric = library.instantiate(saved_id)
    except DashboardError as e:
        raise _http_error(e)

    widget_document = None
    if widget_id:
        repo.save_layout(dashboard, layout, store)
        widget_document = store.to_documents()[store.get(widget_id).grid_order]
    return schemas.MetricOut(metric=metric.to_document(), widget=widget_document)
