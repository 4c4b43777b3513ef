"""
Aggregation Layer
=================

Builds aggregation requests from widget configuration and shapes the rows the
aggregation endpoints send back.

ARCHITECTURE OVERVIEW
---------------------
```
Widget.aggregation_config + global filters
    |
    v
Filter Normalizer (aggregation/filters.py)
    |   drops invalid filters, canonical value per operator
    |
Metric Compiler (aggregation/metrics.py)
    |   MetricEdit -> MetricRequest + MetricPresentation
    |
    v
Request Assembler (aggregation/request.py)
    |   AggregateRequest | RawRequest
    |
    v
AggregationClient (services/aggregation_client.py)  -- external SQL
    |
    v
Result Post-Processor (aggregation/results.py)
    |   columns, converted rows, chart config
    v
WidgetStore (services/widget_store.py)
```

Everything in this package is pure: no I/O, no database, no settings. It can
be imported and tested without any environment configured.

USAGE
-----
```python
from dashboard_studio.aggregation import assemble_request, process_results

request = assemble_request(widget.aggregation_config, global_filters,
                           widget.exclude_global_filters, "etl_output.sales")
rows = await client.fetch(request)
result = process_results(rows, widget.aggregation_config, widget.type)
```
"""

from dashboard_studio.aggregation.errors import (
    DashboardError,
    DuplicateWidgetError,
    ErrorCategory,
    ResolutionError,
    ResultShapeError,
    TransportError,
    WidgetNotFoundError,
)
from dashboard_studio.aggregation.filters import (
    NormalizedFilter,
    build_filter_pool,
    normalize_filter,
    normalize_filters,
)
from dashboard_studio.aggregation.metrics import (
    CompiledMetrics,
    MetricList,
    MetricPresentation,
    MetricRequest,
    compile_metric_set,
    compile_metrics,
    resolve_alias,
)
from dashboard_studio.aggregation.model import (
    AggregationConfig,
    AggregationFunc,
    DashboardLayout,
    Filter,
    FilterOperator,
    MetricEdit,
    SavedMetric,
    Widget,
    WidgetType,
)
from dashboard_studio.aggregation.request import (
    AggregateRequest,
    DistinctValuesRequest,
    RawRequest,
    assemble_distinct_values_request,
    assemble_request,
)
from dashboard_studio.aggregation.results import ProcessedResult, process_results

__all__ = [
    # Errors
    "DashboardError",
    "DuplicateWidgetError",
    "ErrorCategory",
    "ResolutionError",
    "ResultShapeError",
    "TransportError",
    "WidgetNotFoundError",
    # Model
    "AggregationConfig",
    "AggregationFunc",
    "DashboardLayout",
    "Filter",
    "FilterOperator",
    "MetricEdit",
    "SavedMetric",
    "Widget",
    "WidgetType",
    # Filters
    "NormalizedFilter",
    "build_filter_pool",
    "normalize_filter",
    "normalize_filters",
    # Metrics
    "CompiledMetrics",
    "MetricList",
    "MetricPresentation",
    "MetricRequest",
    "compile_metric_set",
    "compile_metrics",
    "resolve_alias",
    # Requests
    "AggregateRequest",
    "DistinctValuesRequest",
    "RawRequest",
    "assemble_distinct_values_request",
    "assemble_request",
    # Results
    "ProcessedResult",
    "process_results",
]
