"""
Result Post-Processor
=====================

Turns the row array returned by an aggregation endpoint into what a widget
renders: detected columns, converted rows and a chart configuration.

PIPELINE
--------
    rows
      │
      ├─ 1. detect_columns()      type per key of the first row
      ├─ 2. resolve_fields()      label field + value fields
      ├─ 3. apply_conversions()   multiply / divide / round per metric alias
      └─ 4. shape                 ChartSeries | ScalarSeries | TableSeries

Zero rows short-circuit to an empty chart with a warning. Non-numeric values
are coerced to 0 and never raise. The only failure is a result that cannot be
shaped at all (no label column for a chart, no value column for anything but
a table): ResultShapeError.

CHART CONFIG FORMAT
-------------------
Chart.js-compatible, camelCase keys:
    {"labels": ["Lima", "Cusco"],
     "datasets": [{"label": "total", "data": [10, 4],
                   "backgroundColor": "#10b98180", "borderColor": "#10b981",
                   "borderWidth": 2}]}

RELATED FILES
-------------
- dashboard_studio/aggregation/metrics.py: MetricPresentation, resolve_alias()
- dashboard_studio/services/widget_loader.py: calls process_results()
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field as dataclass_field
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from dashboard_studio.aggregation.errors import ResultShapeError
from dashboard_studio.aggregation.metrics import (
    MetricPresentation,
    compile_metric_set,
    legacy_column_name,
    resolve_alias,
)
from dashboard_studio.aggregation.model import AggregationConfig, ConversionType, WidgetType

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_PALETTE = [
    "#10b981",
    "#06b6d4",
    "#3b82f6",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#14b8a6",
    "#0ea5e9",
    "#10b981",
    "#06b6d4",
    "#3b82f6",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#14b8a6",
    "#0ea5e9",
    "#22c55e",
]

BAR_ALPHA = "80"
AREA_ALPHA = "20"
SLICE_BORDER = "#fff"
BORDER_WIDTH = 2

TABLE_DISPLAY_ROWS = 100

CHART_TYPES = {
    WidgetType.BAR,
    WidgetType.HORIZONTAL_BAR,
    WidgetType.LINE,
    WidgetType.PIE,
    WidgetType.DOUGHNUT,
    WidgetType.COMBO,
}
SLICE_TYPES = {WidgetType.PIE, WidgetType.DOUGHNUT}

DATE_PREFIX_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
TIME_PATTERN = re.compile(r"T\d{2}:\d{2}:\d{2}")


# =============================================================================
# SERIES TYPES
# =============================================================================

@dataclass
class Dataset:
    label: str
    data: List[float]
    background_color: Optional[Union[str, List[str]]] = None
    border_color: Optional[str] = None
    border_width: Optional[int] = None
    type: Optional[str] = None
    fill: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"label": self.label, "data": list(self.data)}
        if self.background_color is not None:
            result["backgroundColor"] = self.background_color
        if self.border_color is not None:
            result["borderColor"] = self.border_color
        if self.border_width is not None:
            result["borderWidth"] = self.border_width
        if self.type is not None:
            result["type"] = self.type
        if self.fill is not None:
            result["fill"] = self.fill
        return result


@dataclass
class ChartSeries:
    """Labels plus one dataset per value field (bar, line, pie, combo...)."""
    labels: List[str]
    datasets: List[Dataset]

    def to_config(self) -> Dict[str, Any]:
        return {"labels": list(self.labels), "datasets": [d.to_dict() for d in self.datasets]}


@dataclass
class ScalarSeries:
    """A single total, rendered by KPI widgets."""
    label: str
    value: float

    def to_config(self) -> Dict[str, Any]:
        return {"labels": ["Total"], "datasets": [{"label": self.label, "data": [self.value]}]}


@dataclass
class TableSeries:
    """Rows for a table widget; only the first TABLE_DISPLAY_ROWS are displayed."""
    columns: List[str]
    rows: List[Dict[str, Any]]

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def to_config(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": self.rows[:TABLE_DISPLAY_ROWS],
            "totalRows": self.total_rows,
        }


Series = Union[ChartSeries, ScalarSeries, TableSeries]


@dataclass
class ProcessedResult:
    """
    Everything a widget needs after a successful fetch.

    `rows` are the converted rows (all of them, not only the displayed ones);
    `columns` are `{"name", "type"}` pairs from the first row.
    """
    config: Dict[str, Any]
    rows: List[Dict[str, Any]]
    columns: List[Dict[str, str]]
    label_field: Optional[str] = None
    value_fields: List[str] = dataclass_field(default_factory=list)
    series: Optional[Series] = None
    warnings: List[str] = dataclass_field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0


# =============================================================================
# COLUMN DETECTION
# =============================================================================

def infer_column_type(value: Any) -> str:
    """
    Classify a sample value.

    Examples:
        >>> infer_column_type(3.5)
        'number'
        >>> infer_column_type("2024-03-01T00:00:00")
        'date'
        >>> infer_column_type(None)
        'unknown'
    """
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        if DATE_PREFIX_PATTERN.search(value) or TIME_PATTERN.search(value):
            return "date"
        return "string"
    return "unknown"


def detect_columns(rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, str]]:
    """Column name/type pairs taken from the first row only."""
    if not rows:
        return []
    return [{"name": key, "type": infer_column_type(value)} for key, value in rows[0].items()]


# =============================================================================
# NUMERIC COERCION & CONVERSION
# =============================================================================

def to_number(value: Any) -> float:
    """
    Coerce anything to a finite number; unparseable values become 0.

    Examples:
        >>> to_number(" 12.5 ")
        12.5
        >>> to_number("n/a")
        0
        >>> to_number(None)
        0
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0
        return number if math.isfinite(number) else 0
    return 0


def round_to(value: float, precision: int) -> float:
    """Round half away from zero to `precision` decimals (2.345 -> 2.35).

    Non-finite values are returned unchanged.
    """
    if not math.isfinite(value):
        return value
    digits = max(0, int(precision))
    quantum = Decimal(1).scaleb(-digits)
    exact = Decimal(repr(value))
    # Integer digits plus requested decimals must fit in the context precision
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, exact.adjusted() + digits + 2)
        rounded = exact.quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)


def convert_value(raw: Any, presentation: MetricPresentation) -> float:
    """
    Apply one metric's conversion and precision to a raw value.

    A factor of 0 (or a missing one) leaves the value unchanged, so dividing
    by zero never happens.
    """
    value = to_number(raw)
    factor = presentation.conversion_factor or 1
    if presentation.conversion_type == ConversionType.MULTIPLY:
        value = value * factor
    elif presentation.conversion_type == ConversionType.DIVIDE:
        value = value / factor
    if presentation.precision is not None:
        value = round_to(value, presentation.precision)
    return value


def apply_conversions(
    rows: Sequence[Mapping[str, Any]],
    presentation: Mapping[str, MetricPresentation],
) -> List[Dict[str, Any]]:
    """
    Return new rows with every metric column converted.

    Only keys that are metric aliases are touched; dimension columns and
    unrelated keys are copied as-is. Input rows are never mutated.
    """
    converted = []
    for row in rows:
        new_row = dict(row)
        for alias, settings in presentation.items():
            if alias in new_row:
                new_row[alias] = convert_value(new_row[alias], settings)
        converted.append(new_row)
    return converted


# =============================================================================
# FIELD RESOLUTION
# =============================================================================

def resolve_fields(
    sample: Mapping[str, Any],
    config: Optional[AggregationConfig],
    label_field: Optional[str] = None,
    value_fields: Optional[Sequence[str]] = None,
) -> tuple:
    """
    Decide which column labels the chart and which columns carry values.

    Aggregated widgets: label = dimension; values = metric aliases in metric
    order, falling back to the legacy `FUNC(field)` column when the alias
    column is absent from the result.

    Raw widgets: explicit fields win; otherwise the first string column
    (else the first column) labels and numeric columns are the values (else
    the first non-label column).

    Returns:
        (label_field or None, list of value fields)
    """
    keys = list(sample.keys())

    if config is not None and config.enabled:
        values = []
        for metric in config.metrics:
            alias = resolve_alias(metric)
            if alias not in sample and not metric.is_formula:
                legacy = legacy_column_name(metric)
                if legacy in sample:
                    alias = legacy
            values.append(alias)
        return config.dimension, values

    label = label_field
    if not label:
        string_keys = [k for k in keys if isinstance(sample[k], str)]
        label = string_keys[0] if string_keys else (keys[0] if keys else None)

    values = [v for v in (value_fields or []) if v]
    if not values:
        numeric_keys = [
            k for k in keys
            if isinstance(sample[k], (int, float)) and not isinstance(sample[k], bool)
        ]
        values = numeric_keys or [k for k in keys if k != label][:1]
    return label, values


# =============================================================================
# SHAPING
# =============================================================================

def _label_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_palette(color: Optional[str]) -> List[str]:
    """Widget colour first, then the default palette."""
    return [color, *DEFAULT_PALETTE] if color else list(DEFAULT_PALETTE)


def _column(rows: Sequence[Mapping[str, Any]], field: str) -> List[float]:
    return [to_number(row.get(field)) for row in rows]


def _chart_series(
    widget_type: WidgetType,
    rows: Sequence[Mapping[str, Any]],
    label_field: str,
    value_fields: List[str],
    palette: List[str],
) -> ChartSeries:
    labels = [_label_text(row.get(label_field)) for row in rows]

    if widget_type == WidgetType.COMBO:
        bar_field = value_fields[0]
        line_field = value_fields[1] if len(value_fields) > 1 else value_fields[0]
        datasets = [
            Dataset(
                label=bar_field,
                data=_column(rows, bar_field),
                background_color=palette[0] + BAR_ALPHA,
                border_color=palette[0],
                border_width=BORDER_WIDTH,
                type="bar",
            ),
            Dataset(
                label=line_field,
                data=_column(rows, line_field),
                background_color=palette[1] + AREA_ALPHA,
                border_color=palette[1],
                border_width=BORDER_WIDTH,
                type="line",
                fill=False,
            ),
        ]
        return ChartSeries(labels=labels, datasets=datasets)

    datasets = []
    for index, field in enumerate(value_fields):
        color = palette[index % len(palette)]
        if widget_type in SLICE_TYPES:
            background: Union[str, List[str]] = [palette[j % len(palette)] for j in range(len(labels))]
            border = SLICE_BORDER
        else:
            background = color if widget_type == WidgetType.LINE else color + BAR_ALPHA
            border = color
        datasets.append(
            Dataset(
                label=field,
                data=_column(rows, field),
                background_color=background,
                border_color=border,
                border_width=BORDER_WIDTH,
            )
        )
    return ChartSeries(labels=labels, datasets=datasets)


def _coerce_widget_type(widget_type: Union[WidgetType, str]) -> WidgetType:
    return widget_type if isinstance(widget_type, WidgetType) else WidgetType(widget_type)


def process_results(
    rows: Optional[Sequence[Mapping[str, Any]]],
    config: Optional[AggregationConfig],
    widget_type: Union[WidgetType, str],
    label_field: Optional[str] = None,
    value_fields: Optional[Sequence[str]] = None,
    color: Optional[str] = None,
    limit: Optional[int] = None,
    widget_id: Optional[str] = None,
) -> ProcessedResult:
    """
    Shape endpoint rows for one widget.

    Args:
        rows: Row array returned by the endpoint
        config: Widget aggregation config (None for raw widgets)
        widget_type: Widget type deciding the output shape
        label_field / value_fields: Explicit source fields (raw widgets only)
        color: Widget colour, used first in the palette
        limit: Limit the request was sent with; hitting it adds a warning
        widget_id: Only used to enrich errors and logs

    Returns:
        ProcessedResult

    Raises:
        ResultShapeError: label field missing for a chart (unresolved or
            absent from the rows), or no value field present for any type
            other than table
    """
    kind = _coerce_widget_type(widget_type)

    if not rows:
        logger.info(f"[RESULTS] Widget {widget_id}: query returned no rows")
        return ProcessedResult(
            config={"labels": [], "datasets": []},
            rows=[],
            columns=[],
            warnings=["The query returned no data."],
        )

    warnings: List[str] = []
    if limit is not None and len(rows) >= limit:
        warnings.append(f"Only the first {limit} rows were loaded.")

    columns = detect_columns(rows)
    resolved_label, resolved_values = resolve_fields(rows[0], config, label_field, value_fields)

    if not resolved_label and kind in CHART_TYPES:
        raise ResultShapeError(
            message="Could not determine the label field.",
            widget_id=widget_id,
            details={"widget_type": kind.value, "columns": [c["name"] for c in columns]},
        )
    if not resolved_values and kind != WidgetType.TABLE:
        raise ResultShapeError(
            message="Could not determine the value fields.",
            widget_id=widget_id,
            details={"widget_type": kind.value, "columns": [c["name"] for c in columns]},
        )
    if kind in CHART_TYPES and resolved_label not in rows[0]:
        raise ResultShapeError(
            message=f"The result has no column '{resolved_label}' for the labels.",
            widget_id=widget_id,
            details={"label_field": resolved_label, "columns": [c["name"] for c in columns]},
        )
    if kind != WidgetType.TABLE and not any(v in rows[0] for v in resolved_values):
        raise ResultShapeError(
            message="The result has none of the value columns.",
            widget_id=widget_id,
            details={"value_fields": list(resolved_values), "columns": [c["name"] for c in columns]},
        )

    processed_rows = [dict(row) for row in rows]
    if config is not None and config.enabled and config.metrics:
        compiled = compile_metric_set(config.metrics)
        if compiled.duplicate_aliases:
            warnings.append(
                f"Duplicate metric aliases: {', '.join(compiled.duplicate_aliases)}."
            )
        processed_rows = apply_conversions(processed_rows, compiled.presentation)

    palette = build_palette(color)
    series: Optional[Series] = None
    if kind in CHART_TYPES:
        series = _chart_series(kind, processed_rows, resolved_label, resolved_values, palette)
    elif kind == WidgetType.KPI:
        value_field = resolved_values[0]
        total = sum(to_number(row.get(value_field)) for row in processed_rows)
        series = ScalarSeries(label=value_field, value=total)
    elif kind == WidgetType.TABLE:
        series = TableSeries(columns=[c["name"] for c in columns], rows=processed_rows)

    logger.debug(
        f"[RESULTS] Widget {widget_id}: {len(processed_rows)} rows, "
        f"label={resolved_label}, values={resolved_values}"
    )

    return ProcessedResult(
        config=series.to_config() if series is not None else {"labels": [], "datasets": []},
        rows=processed_rows,
        columns=columns,
        label_field=resolved_label,
        value_fields=list(resolved_values),
        series=series,
        warnings=warnings,
    )
