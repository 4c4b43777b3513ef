"""
Result Post-Processor Tests (Unit)
==================================

WHAT: Unit tests for column detection, conversions and chart shaping.
WHY: Endpoint rows are untrusted (strings for numbers, NaN, legacy column
     names); post-processing must coerce instead of failing and only raise
     when a widget cannot be shaped at all.

REFERENCES:
- backend/dashboard_studio/aggregation/results.py
"""

import pytest

from dashboard_studio.aggregation.errors import ErrorCategory, ResultShapeError
from dashboard_studio.aggregation.metrics import MetricPresentation
from dashboard_studio.aggregation.model import AggregationConfig, ConversionType
from dashboard_studio.aggregation.results import (
    DEFAULT_PALETTE,
    TABLE_DISPLAY_ROWS,
    apply_conversions,
    convert_value,
    detect_columns,
    infer_column_type,
    process_results,
    round_to,
    to_number,
)


def _config(**kwargs) -> AggregationConfig:
    return AggregationConfig.model_validate({"enabled": True, **kwargs})


REGION_ROWS = [
    {"region": "Lima", "ventas": 1500, "costo": 900},
    {"region": "Cusco", "ventas": "400", "costo": None},
]


# =============================================================================
# COLUMNS & NUMBERS
# =============================================================================

def test_infer_column_type() -> None:
    assert infer_column_type(True) == "boolean"
    assert infer_column_type(3) == "number"
    assert infer_column_type("2024-03-01") == "date"
    assert infer_column_type("10T12:00:00") == "date"
    assert infer_column_type("Lima") == "string"
    assert infer_column_type(None) == "unknown"


def test_detect_columns_uses_first_row_only() -> None:
    rows = [{"a": 1, "b": "x"}, {"a": "y", "c": 2}]
    assert detect_columns(rows) == [{"name": "a", "type": "number"}, {"name": "b", "type": "string"}]
    assert detect_columns([]) == []


@pytest.mark.parametrize("raw, expected", [
    (None, 0),
    ("", 0),
    ("abc", 0),
    (" 12.5 ", 12.5),
    (float("nan"), 0),
    (float("inf"), 0),
    ("NaN", 0),
    (7, 7),
])
def test_to_number(raw, expected) -> None:
    assert to_number(raw) == expected


def test_round_half_up() -> None:
    assert round_to(2.345, 2) == 2.35
    assert round_to(2.5, 0) == 3
    assert round_to(-2.5, 0) == -3
    assert round_to(1.0049, 2) == 1.0


def test_convert_value() -> None:
    divide = MetricPresentation(alias="v", conversion_type=ConversionType.DIVIDE, conversion_factor=1000, precision=1)
    assert convert_value(123456, divide) == 123.5

    multiply = MetricPresentation(alias="v", conversion_type=ConversionType.MULTIPLY, conversion_factor=100)
    assert convert_value("0.25", multiply) == 25


def test_zero_factor_never_divides_by_zero() -> None:
    presentation = MetricPresentation(alias="v", conversion_type=ConversionType.DIVIDE, conversion_factor=0)
    assert convert_value(42, presentation) == 42


def test_apply_conversions_does_not_mutate_input() -> None:
    rows = [{"region": "Lima", "v": 2000}]
    presentation = {"v": MetricPresentation(alias="v", conversion_type=ConversionType.DIVIDE, conversion_factor=1000)}
    converted = apply_conversions(rows, presentation)
    assert converted == [{"region": "Lima", "v": 2.0}]
    assert rows == [{"region": "Lima", "v": 2000}]


# =============================================================================
# SHAPING
# =============================================================================

def test_empty_rows_short_circuit() -> None:
    result = process_results([], _config(metrics=[{"field": "x"}]), "bar")
    assert result.is_empty
    assert result.config == {"labels": [], "datasets": []}
    assert result.warnings == ["The query returned no data."]


def test_bar_chart_with_conversions_and_coercion() -> None:
    config = _config(
        dimension="region",
        metrics=[
            {"field": "monto", "func": "SUM", "alias": "ventas", "conversionType": "divide", "conversionFactor": 100},
            {"field": "costo", "func": "SUM", "alias": "costo"},
        ],
    )
    result = process_results(REGION_ROWS, config, "bar", color="#123456")

    assert result.label_field == "region"
    assert result.value_fields == ["ventas", "costo"]
    assert result.config["labels"] == ["Lima", "Cusco"]
    ventas, costo = result.config["datasets"]
    assert ventas == {
        "label": "ventas",
        "data": [15.0, 4.0],
        "backgroundColor": "#12345680",
        "borderColor": "#123456",
        "borderWidth": 2,
    }
    assert costo["data"] == [900, 0]
    assert costo["borderColor"] == DEFAULT_PALETTE[0]
    # Endpoint rows are left untouched
    assert REGION_ROWS[0]["ventas"] == 1500


def test_line_chart_uses_solid_colours() -> None:
    config = _config(dimension="region", metrics=[{"field": "monto", "func": "SUM", "alias": "ventas"}])
    dataset = process_results(REGION_ROWS, config, "line").config["datasets"][0]
    assert dataset["backgroundColor"] == DEFAULT_PALETTE[0]


def test_pie_chart_colours_each_slice() -> None:
    config = _config(dimension="region", metrics=[{"field": "monto", "func": "SUM", "alias": "ventas"}])
    dataset = process_results(REGION_ROWS, config, "pie").config["datasets"][0]
    assert dataset["backgroundColor"] == DEFAULT_PALETTE[:2]
    assert dataset["borderColor"] == "#fff"


def test_combo_chart_has_bar_and_line_datasets() -> None:
    config = _config(
        dimension="region",
        metrics=[
            {"field": "monto", "func": "SUM", "alias": "ventas"},
            {"field": "costo", "func": "SUM", "alias": "costo"},
        ],
    )
    bar, line = process_results(REGION_ROWS, config, "combo").config["datasets"]
    assert bar["type"] == "bar"
    assert bar["backgroundColor"] == DEFAULT_PALETTE[0] + "80"
    assert line["type"] == "line"
    assert line["fill"] is False
    assert line["backgroundColor"] == DEFAULT_PALETTE[1] + "20"


def test_kpi_sums_the_first_value_field() -> None:
    config = _config(metrics=[{"field": "monto", "func": "SUM", "alias": "total", "precision": 0}])
    result = process_results([{"total": "10.4"}, {"total": 5}], config, "kpi")
    assert result.config == {"labels": ["Total"], "datasets": [{"label": "total", "data": [15]}]}


def test_legacy_column_name_fallback() -> None:
    config = _config(dimension="region", metrics=[{"field": "monto", "func": "SUM"}])
    rows = [{"region": "Lima", "SUM(monto)": 7}]
    result = process_results(rows, config, "bar")
    assert result.value_fields == ["SUM(monto)"]
    assert result.config["datasets"][0]["data"] == [7]


def test_raw_widget_infers_label_and_values() -> None:
    rows = [{"id": 1, "nombre": "Ana", "edad": 30}]
    result = process_results(rows, None, "bar")
    assert result.label_field == "nombre"
    assert result.value_fields == ["id", "edad"]


def test_raw_widget_explicit_fields_win() -> None:
    rows = [{"id": 1, "nombre": "Ana", "edad": 30}]
    result = process_results(rows, None, "bar", label_field="id", value_fields=["edad"])
    assert result.config["labels"] == ["1"]
    assert [d["label"] for d in result.config["datasets"]] == ["edad"]


def test_table_keeps_all_rows_but_displays_a_window() -> None:
    rows = [{"n": i} for i in range(TABLE_DISPLAY_ROWS + 20)]
    result = process_results(rows, None, "table", limit=500)
    assert result.config["totalRows"] == TABLE_DISPLAY_ROWS + 20
    assert len(result.config["rows"]) == TABLE_DISPLAY_ROWS
    assert len(result.rows) == TABLE_DISPLAY_ROWS + 20
    assert result.warnings == []


def test_hitting_the_limit_adds_a_warning() -> None:
    result = process_results([{"n": 1}, {"n": 2}], None, "table", limit=2)
    assert result.warnings == ["Only the first 2 rows were loaded."]


def test_duplicate_aliases_add_a_warning() -> None:
    config = _config(
        dimension="region",
        metrics=[
            {"field": "monto", "func": "SUM", "alias": "ventas"},
            {"field": "costo", "func": "SUM", "alias": "ventas"},
        ],
    )
    result = process_results(REGION_ROWS, config, "bar")
    assert result.warnings == ["Duplicate metric aliases: ventas."]


def test_chart_without_label_field_raises() -> None:
    config = _config(metrics=[{"field": "monto", "func": "SUM", "alias": "ventas"}])
    with pytest.raises(ResultShapeError) as exc_info:
        process_results([{"ventas": 1}], config, "bar", widget_id="w-1")
    error = exc_info.value
    assert error.category == ErrorCategory.RESOLUTION
    assert error.widget_id == "w-1"
    assert error.message == "Could not determine the label field."


def test_kpi_without_value_field_raises() -> None:
    config = _config(metrics=[])
    with pytest.raises(ResultShapeError):
        process_results([{"ventas": 1}], config, "kpi")


def test_chart_with_dimension_absent_from_rows_raises() -> None:
    config = _config(dimension="city", metrics=[{"field": "amount", "func": "SUM", "alias": "total"}])
    with pytest.raises(ResultShapeError) as exc_info:
        process_results([{"region": "A", "amount": 3}], config, "bar", widget_id="w-1")
    assert exc_info.value.message == "The result has no column 'city' for the labels."
    assert exc_info.value.details["columns"] == ["region", "amount"]


def test_chart_with_no_value_column_in_rows_raises() -> None:
    config = _config(dimension="region", metrics=[{"field": "amount", "func": "SUM", "alias": "total"}])
    with pytest.raises(ResultShapeError) as exc_info:
        process_results([{"region": "A", "amount": 3}], config, "line")
    assert exc_info.value.message == "The result has none of the value columns."
    assert exc_info.value.details["value_fields"] == ["total"]


def test_table_tolerates_missing_metric_columns() -> None:
    config = _config(dimension="city", metrics=[{"field": "amount", "func": "SUM", "alias": "total"}])
    result = process_results([{"region": "A", "amount": 3}], config, "table")
    assert result.config["columns"] == ["region", "amount"]


# =============================================================================
# PRECISION LIMITS
# =============================================================================

def test_round_to_beyond_default_decimal_precision() -> None:
    assert round_to(1.5, 30) == 1.5
    assert round_to(123456789012.5, 20) == 123456789012.5
    assert round_to(1e300, 5) == 1e300
    assert round_to(float("inf"), 2) == float("inf")


def test_large_aggregate_with_high_precision_is_shaped() -> None:
    config = _config(dimension="city", metrics=[{"field": "amount", "func": "SUM", "alias": "total", "precision": 20}])
    result = process_results([{"city": "A", "total": 123456789012.5}], config, "bar")
    assert result.config["datasets"][0]["data"] == [123456789012.5]


# =============================================================================
# WORKED EXAMPLES
# =============================================================================

def test_divide_then_round_to_two_decimals() -> None:
    presentation = MetricPresentation(
        alias="ventas_k", conversion_type=ConversionType.DIVIDE, conversion_factor=1000, precision=2
    )
    assert convert_value(1234.567, presentation) == 1.23

    config = _config(
        dimension="region",
        metrics=[{
            "field": "monto", "func": "SUM", "alias": "ventas_k",
            "conversionType": "divide", "conversionFactor": 1000, "precision": 2,
        }],
    )
    result = process_results([{"region": "Lima", "ventas_k": 1234.567}], config, "bar")
    assert result.rows == [{"region": "Lima", "ventas_k": 1.23}]
    assert result.config["datasets"][0]["data"] == [1.23]


def test_top_cities_by_total() -> None:
    config = _config(
        dimension="city",
        metrics=[{"func": "SUM", "field": "amount", "alias": "total"}],
        limit=2,
        orderBy={"field": "total", "direction": "DESC"},
    )
    rows = [{"city": "A", "total": 300}, {"city": "B", "total": 100}]

    result = process_results(rows, config, "bar", limit=config.limit)

    assert result.config["labels"] == ["A", "B"]
    assert [(d["label"], d["data"]) for d in result.config["datasets"]] == [("total", [300, 100])]
    assert result.warnings == ["Only the first 2 rows were loaded."]
