"""Pydantic schemas for request/response payloads."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .aggregation.model import AggregationConfig, Filter, MetricEdit


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Error message")

    model_config = {
        "json_schema_extra": {
            "example": {
                "detail": "Widget 'w-1' not found"
            }
        }
    }


# Dashboards ---------------------------------------------------------

class DashboardOut(BaseModel):
    """A dashboard with its persisted layout and global filters."""

    id: str
    title: str
    etl_id: Optional[str] = None
    layout: Dict[str, Any] = Field(description="Layout document {widgets, theme, pages?, activePageId?, savedMetrics?}")
    global_filters: List[Dict[str, Any]] = Field(default_factory=list)


class LayoutSaved(BaseModel):
    layout: Dict[str, Any]


class GlobalFiltersIn(BaseModel):
    """Replace the dashboard-wide filters."""

    filters: List[Filter] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "filters": [
                    {"field": "fecha", "operator": "YEAR", "value": 2024},
                    {"field": "region", "operator": "IN", "value": ["Lima", "Cusco"]},
                ]
            }
        },
    }


class GlobalFiltersOut(BaseModel):
    filters: List[Dict[str, Any]]


# Widgets ------------------------------------------------------------

class WidgetMove(BaseModel):
    direction: Literal["up", "down"]


class WidgetOut(BaseModel):
    widget: Dict[str, Any]


class WidgetListOut(BaseModel):
    widgets: List[Dict[str, Any]]


class LoadOutcomeOut(BaseModel):
    """Outcome of one widget load plus the widget with its runtime data."""

    widget_id: str
    status: Literal["ok", "empty", "error", "stale", "skipped"]
    message: Optional[str] = None
    category: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    widget: Optional[Dict[str, Any]] = None


class RefreshOut(BaseModel):
    outcomes: List[LoadOutcomeOut]


# Saved metrics ------------------------------------------------------

class SavedMetricIn(BaseModel):
    """Save a metric as a reusable template (upserted by name)."""

    name: str = Field(min_length=1)
    metric: MetricEdit


class SavedMetricOut(BaseModel):
    saved_metric: Dict[str, Any]


class InstantiateSavedMetricIn(BaseModel):
    """Optionally append the new metric instance to a widget."""

    widget_id: Optional[str] = None


class MetricOut(BaseModel):
    metric: Dict[str, Any]
    widget: Optional[Dict[str, Any]] = None


# Aggregation --------------------------------------------------------

class DistinctValuesIn(BaseModel):
    """Options for a filter dropdown."""

    field: str = Field(min_length=1)
    filters: List[Dict[str, Any]] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, description="1..1000, default 200")
    order: Literal["ASC", "DESC"] = "ASC"
    transform: Optional[Literal["YEAR", "MONTH", "DAY"]] = None
    widget_id: Optional[str] = Field(default=None, description="Pick the widget's data source")


class DistinctValuesOut(BaseModel):
    values: List[Any]


class PreviewIn(BaseModel):
    """Assemble an aggregation request without sending it."""

    table_name: str = Field(min_length=1, description="schema.table")
    aggregation_config: Optional[AggregationConfig] = None
    global_filters: List[Filter] = Field(default_factory=list)
    exclude_global_filters: bool = False


class PreviewOut(BaseModel):
    endpoint: str
    payload: Dict[str, Any]


# Health -------------------------------------------------------------

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")
