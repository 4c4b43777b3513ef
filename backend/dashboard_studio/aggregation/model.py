"""
Dashboard Domain Model
======================

Pydantic models for everything a dashboard layout document contains:
aggregation configuration, metrics, filters, widgets and saved metrics.

WHY THIS FILE EXISTS
--------------------
The layout is stored as one opaque JSON document (camelCase keys, written by
the frontend). These models give it a typed shape in Python while keeping the
exact wire spelling:

    - Attributes are snake_case (`grid_order`, `aggregation_config`)
    - Input accepts camelCase or snake_case
    - Output (`to_document()`) is always camelCase, `None` fields omitted
    - Unknown widget/layout keys (canvas x/y/w/h, KPI labels, text content...)
      are preserved verbatim so a load/save round trip never loses data

UI-ONLY vs WIRE FIELDS
----------------------
`MetricEdit` is the metric as the editor sees it, including presentation
fields (conversion, precision, numeric cast). It is never sent to the
aggregation endpoint as-is: aggregation/metrics.py compiles it into a
`MetricRequest` that carries only wire fields.

RELATED FILES
-------------
- dashboard_studio/aggregation/filters.py: normalizes `Filter`
- dashboard_studio/aggregation/metrics.py: compiles `MetricEdit`
- dashboard_studio/aggregation/request.py: assembles `AggregationConfig`
- dashboard_studio/services/widget_store.py: holds `Widget` collections
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def new_id(prefix: str) -> str:
    """Opaque id in the style the editor generates (e.g. `m-3f9a1c2e`)."""
    return f"{prefix}-{uuid4().hex[:12]}"


# =============================================================================
# ENUMS
# =============================================================================

class AggregationFunc(str, Enum):
    """
    Aggregation functions a metric can use.

    NOTE: COUNT_DISTINCT is deliberately the unterminated token
    "COUNT(DISTINCT". The aggregation backend appends the field and the
    closing parenthesis itself, so the value must travel verbatim.
    """
    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    MIN = "MIN"
    MAX = "MAX"
    COUNT_DISTINCT = "COUNT(DISTINCT"
    FORMULA = "FORMULA"


class FilterOperator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUALS = ">="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUALS = "<="
    LIKE = "LIKE"
    ILIKE = "ILIKE"
    IN = "IN"
    BETWEEN = "BETWEEN"
    MONTH = "MONTH"
    YEAR = "YEAR"
    DAY = "DAY"
    IS = "IS"
    IS_NOT = "IS NOT"


class CumulativeMode(str, Enum):
    """Post-aggregation transform computed by the backend."""
    NONE = "none"
    RUNNING_SUM = "running_sum"  # Monotonic running total
    YTD = "ytd"                  # Running total reset every calendar year


class ComparePeriod(str, Enum):
    PREVIOUS_YEAR = "previous_year"
    PREVIOUS_MONTH = "previous_month"


class ConversionType(str, Enum):
    NONE = "none"
    MULTIPLY = "multiply"
    DIVIDE = "divide"


class NumericCast(str, Enum):
    NONE = "none"
    NUMERIC = "numeric"    # field::numeric
    SANITIZE = "sanitize"  # strip non-numeric characters, then ::numeric


class WidgetType(str, Enum):
    BAR = "bar"
    HORIZONTAL_BAR = "horizontalBar"
    LINE = "line"
    PIE = "pie"
    DOUGHNUT = "doughnut"
    COMBO = "combo"
    TABLE = "table"
    KPI = "kpi"
    FILTER = "filter"
    IMAGE = "image"
    TEXT = "text"


# Widget types whose data comes from the aggregation endpoints
DATA_WIDGET_TYPES = {
    WidgetType.BAR,
    WidgetType.HORIZONTAL_BAR,
    WidgetType.LINE,
    WidgetType.PIE,
    WidgetType.DOUGHNUT,
    WidgetType.COMBO,
    WidgetType.TABLE,
    WidgetType.KPI,
}


# =============================================================================
# BASE MODEL
# =============================================================================

class CamelModel(BaseModel):
    """Base for layout documents: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted/wire JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# FILTERS
# =============================================================================

class Filter(CamelModel):
    """
    A user-authored filter, global (dashboard-wide) or local (widget).

    `operator` and `value` are kept raw here: the editor lets users type
    anything, and aggregation/filters.py decides whether the pair is usable.
    """
    id: str = Field(default_factory=lambda: new_id("f"))
    field: str
    operator: str = "="
    value: Any = None
    convert_to_number: Optional[bool] = None
    input_type: Optional[str] = None  # text | select | number | date


class OrderBy(CamelModel):
    field: str
    direction: Literal["ASC", "DESC"] = "ASC"

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# METRICS
# =============================================================================

class MetricCondition(CamelModel):
    """Per-row predicate for a conditional aggregate (SUM(x) WHERE status = 'ok')."""
    field: str
    operator: str = "="
    value: Any = None


class MetricEdit(CamelModel):
    """
    A metric as authored in the editor.

    Exactly one of (`field` with a non-FORMULA `func`) or (`formula` with
    `func == FORMULA`) is meaningful. The presentation fields at the bottom
    drive result post-processing and never reach the aggregation endpoint.
    """
    id: str = Field(default_factory=lambda: new_id("m"))
    field: str = ""
    func: AggregationFunc = AggregationFunc.SUM
    alias: str = ""
    condition: Optional[MetricCondition] = None
    formula: Optional[str] = None

    # Presentation-only
    conversion_type: Optional[ConversionType] = None
    conversion_factor: Optional[float] = None
    precision: Optional[int] = None
    allow_string_as_numeric: Optional[bool] = None
    # Plain string: legacy layouts carry values outside NumericCast
    numeric_cast: Optional[str] = None

    @field_validator("func", mode="before")
    @classmethod
    def _upper_func(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def is_formula(self) -> bool:
        return self.func == AggregationFunc.FORMULA


# =============================================================================
# AGGREGATION CONFIG
# =============================================================================

class AggregationConfig(CamelModel):
    """
    Aggregation settings of one data-bearing widget.

    INVARIANT: `cumulative == ytd` or a `compare_period` only make sense with a
    `date_dimension`. The model accepts the incomplete combination (the editor
    saves drafts); the request assembler omits those modes instead of sending
    a malformed request.
    """
    enabled: bool = False
    dimension: Optional[str] = None
    dimension2: Optional[str] = None
    date_dimension: Optional[str] = None
    metrics: List[MetricEdit] = Field(default_factory=list)
    filters: List[Filter] = Field(default_factory=list)
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    cumulative: CumulativeMode = CumulativeMode.NONE
    compare_period: Optional[ComparePeriod] = None

    @field_validator("dimension", "dimension2", "date_dimension", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("filters", mode="before")
    @classmethod
    def _null_filters(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def dimensions(self) -> List[str]:
        """Grouping columns that are actually set, in order."""
        return [d for d in (self.dimension, self.dimension2) if d]

    @property
    def is_aggregated(self) -> bool:
        return self.enabled and len(self.metrics) > 0

    @property
    def needs_date_dimension(self) -> bool:
        return self.cumulative == CumulativeMode.YTD or self.compare_period is not None


# =============================================================================
# WIDGETS & LAYOUT
# =============================================================================

class WidgetSource(CamelModel):
    """Explicit label/value columns for widgets without aggregation."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    table: Optional[str] = None
    label_field: Optional[str] = None
    value_fields: Optional[List[str]] = None


class Widget(CamelModel):
    """
    One tile on the dashboard.

    `rows`, `config` and `columns` are runtime data filled by the
    fetch-and-process cycle; they are stripped when the layout is saved.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(default_factory=lambda: new_id("w"))
    type: WidgetType
    title: str = ""
    grid_order: Optional[int] = None
    grid_span: Literal[1, 2, 4] = 2
    min_height: Optional[int] = None
    aggregation_config: Optional[AggregationConfig] = None
    source: Optional[WidgetSource] = None
    color: Optional[str] = None
    exclude_global_filters: bool = False
    data_source_id: Optional[str] = None
    page_id: Optional[str] = None

    # Runtime
    rows: Optional[List[Dict[str, Any]]] = None
    config: Optional[Dict[str, Any]] = None
    columns: Optional[List[Dict[str, Any]]] = None
    is_loading: bool = False

    @field_validator("grid_span", mode="before")
    @classmethod
    def _default_span(cls, v: Any) -> Any:
        # Older layouts stored arbitrary spans; snap them back to the default
        if v is None or v not in (1, 2, 4):
            return 2
        return v

    @property
    def is_data_widget(self) -> bool:
        return self.type in DATA_WIDGET_TYPES


class DashboardPage(CamelModel):
    id: str
    name: str


class SavedMetric(CamelModel):
    """A named, reusable metric template independent of any widget."""
    id: str = Field(default_factory=lambda: new_id("sm"))
    name: str
    metric: MetricEdit


class DashboardLayout(CamelModel):
    """The persisted layout document: `{widgets, theme, pages?, activePageId?, savedMetrics?}`."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    widgets: List[Widget] = Field(default_factory=list)
    theme: Dict[str, Any] = Field(default_factory=dict)
    pages: Optional[List[DashboardPage]] = None
    active_page_id: Optional[str] = None
    saved_metrics: List[SavedMetric] = Field(default_factory=list)
