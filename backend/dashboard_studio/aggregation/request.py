"""
Request Assembler
=================

Turns a widget's aggregation configuration plus the dashboard's global filters
into the exact body of one aggregation endpoint call.

WHY THIS FILE EXISTS
--------------------
The aggregation endpoints execute SQL on our behalf and are strict about the
body they receive. Everything the editor stores loosely (blank dimensions,
missing limits, YTD without a date column, global filters left empty) is
settled here, in one pure function, so that the loader and the preview
endpoint build byte-identical requests.

REQUEST KINDS
-------------
    enabled + >=1 metric   -> AggregateRequest   POST /api/dashboard/aggregate-data
    anything else          -> RawRequest         POST /api/dashboard/raw-data
    filter dropdowns       -> DistinctValuesRequest  POST /api/dashboard/distinct-values

FILTER POOL
-----------
Local (widget) filters first, then global filters unless the widget opts out.
Global filters with a blank value are inactive and skipped. Every filter in
the pool then goes through the Filter Normalizer; invalid ones are dropped.

RELATED FILES
-------------
- dashboard_studio/aggregation/filters.py: build_filter_pool(), normalize_filters()
- dashboard_studio/aggregation/metrics.py: compile_metric_set()
- dashboard_studio/services/aggregation_client.py: sends these requests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from dashboard_studio.aggregation.filters import (
    FilterInput,
    NormalizedFilter,
    build_filter_pool,
    normalize_filters,
)
from dashboard_studio.aggregation.metrics import MetricRequest, compile_metric_set
from dashboard_studio.aggregation.model import AggregationConfig, CumulativeMode, Filter

logger = logging.getLogger(__name__)


AGGREGATE_ENDPOINT = "/api/dashboard/aggregate-data"
RAW_ENDPOINT = "/api/dashboard/raw-data"
DISTINCT_VALUES_ENDPOINT = "/api/dashboard/distinct-values"

DEFAULT_AGGREGATE_LIMIT = 100
DEFAULT_RAW_LIMIT = 500
MAX_LIMIT = 5000

DEFAULT_DISTINCT_LIMIT = 200
MAX_DISTINCT_LIMIT = 1000


def clamp_limit(limit: Optional[int], default: int, maximum: int = MAX_LIMIT) -> int:
    """
    Clamp a user limit into [1, maximum]; missing or zero falls back to default.

    Examples:
        >>> clamp_limit(None, 100)
        100
        >>> clamp_limit(99999, 100)
        5000
        >>> clamp_limit(-3, 100)
        1
    """
    if limit is None or limit == 0:
        return default
    return max(1, min(maximum, int(limit)))


# =============================================================================
# REQUEST TYPES
# =============================================================================

@dataclass
class AggregateRequest:
    """Body of POST /api/dashboard/aggregate-data."""
    table_name: str
    metrics: List[MetricRequest]
    filters: List[NormalizedFilter] = dataclass_field(default_factory=list)
    dimension: Optional[str] = None
    dimensions: List[str] = dataclass_field(default_factory=list)
    order_by: Optional[Dict[str, Any]] = None
    limit: int = DEFAULT_AGGREGATE_LIMIT
    cumulative: str = CumulativeMode.NONE.value
    compare_period: Optional[str] = None
    date_dimension: Optional[str] = None

    endpoint = AGGREGATE_ENDPOINT

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"tableName": self.table_name}
        if self.dimension:
            payload["dimension"] = self.dimension
        if self.dimensions:
            payload["dimensions"] = list(self.dimensions)
        payload["metrics"] = [metric.to_payload() for metric in self.metrics]
        payload["filters"] = [flt.to_payload() for flt in self.filters]
        if self.order_by:
            payload["orderBy"] = self.order_by
        payload["limit"] = self.limit
        payload["cumulative"] = self.cumulative
        if self.compare_period:
            payload["comparePeriod"] = self.compare_period
        if self.date_dimension:
            payload["dateDimension"] = self.date_dimension
        return payload


@dataclass
class RawRequest:
    """Body of POST /api/dashboard/raw-data."""
    table_name: str
    filters: List[NormalizedFilter] = dataclass_field(default_factory=list)
    limit: int = DEFAULT_RAW_LIMIT
    order_by: Optional[Dict[str, Any]] = None

    endpoint = RAW_ENDPOINT

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tableName": self.table_name,
            "filters": [flt.to_payload() for flt in self.filters],
            "limit": self.limit,
        }
        if self.order_by:
            payload["orderBy"] = self.order_by
        return payload


@dataclass
class DistinctValuesRequest:
    """Body of POST /api/dashboard/distinct-values (filter dropdown options)."""
    table_name: str
    field: str
    filters: List[NormalizedFilter] = dataclass_field(default_factory=list)
    limit: int = DEFAULT_DISTINCT_LIMIT
    order: Literal["ASC", "DESC"] = "ASC"
    transform: Optional[Literal["YEAR", "MONTH", "DAY"]] = None

    endpoint = DISTINCT_VALUES_ENDPOINT

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tableName": self.table_name,
            "field": self.field,
            "limit": self.limit,
            "order": self.order,
        }
        if self.filters:
            payload["filters"] = [flt.to_payload() for flt in self.filters]
        if self.transform:
            payload["transform"] = self.transform
        return payload


DataRequest = Union[AggregateRequest, RawRequest]


# =============================================================================
# ASSEMBLY
# =============================================================================

def assemble_request(
    config: Optional[AggregationConfig],
    global_filters: Optional[Iterable[Filter]],
    exclude_global: bool,
    table_name: str,
) -> DataRequest:
    """
    Build the request for one widget refresh.

    Args:
        config: Widget aggregation config (None for widgets without one)
        global_filters: Dashboard-wide filters
        exclude_global: Widget opted out of global filters
        table_name: Resolved `schema.table`

    Returns:
        AggregateRequest when aggregation is enabled with at least one
        metric, RawRequest otherwise
    """
    local_filters = config.filters if config else []
    pool = build_filter_pool(local_filters, global_filters, exclude_global)
    filters = normalize_filters(pool)
    if len(filters) < len(pool):
        logger.debug(f"[ASSEMBLER] Dropped {len(pool) - len(filters)} invalid filter(s) for {table_name}")

    order_by = config.order_by.model_dump(mode="json") if config and config.order_by else None

    if config is None or not config.is_aggregated:
        limit = clamp_limit(config.limit if config else None, DEFAULT_RAW_LIMIT)
        return RawRequest(table_name=table_name, filters=filters, limit=limit, order_by=order_by)

    compiled = compile_metric_set(config.metrics)

    cumulative = config.cumulative
    compare_period = config.compare_period.value if config.compare_period else None
    date_dimension = config.date_dimension

    if config.needs_date_dimension and not date_dimension:
        logger.warning(
            f"[ASSEMBLER] cumulative={cumulative.value} compare_period={compare_period} "
            f"require a date dimension; omitting them for {table_name}"
        )
        if cumulative == CumulativeMode.YTD:
            cumulative = CumulativeMode.NONE
        compare_period = None

    return AggregateRequest(
        table_name=table_name,
        metrics=compiled.requests,
        filters=filters,
        dimension=config.dimension,
        dimensions=config.dimensions,
        order_by=order_by,
        limit=clamp_limit(config.limit, DEFAULT_AGGREGATE_LIMIT),
        cumulative=cumulative.value,
        compare_period=compare_period,
        date_dimension=date_dimension,
    )


def assemble_distinct_values_request(
    table_name: str,
    field: str,
    filters: Optional[Iterable[FilterInput]] = None,
    limit: Optional[int] = None,
    order: str = "ASC",
    transform: Optional[str] = None,
) -> DistinctValuesRequest:
    """Build a distinct-values request; invalid filters are dropped like everywhere else."""
    order_value = "DESC" if str(order).upper() == "DESC" else "ASC"
    transform_value = transform.upper() if transform else None
    if transform_value not in (None, "YEAR", "MONTH", "DAY"):
        logger.debug(f"[ASSEMBLER] Ignoring unknown distinct-values transform {transform!r}")
        transform_value = None
    return DistinctValuesRequest(
        table_name=table_name,
        field=field,
        filters=normalize_filters(filters or []),
        limit=clamp_limit(limit, DEFAULT_DISTINCT_LIMIT, MAX_DISTINCT_LIMIT),
        order=order_value,
        transform=transform_value,
    )
