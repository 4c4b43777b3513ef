"""
Aggregation Error Taxonomy
==========================

Error classification for the widget fetch-and-process cycle.

WHY THIS FILE EXISTS
--------------------
Failures happen at very different points of a widget refresh:

    1. Validation (droppable)
       - Malformed MONTH / YEAR / DAY filter values
       - Unknown operators
       -> the single filter is dropped, never raised

    2. Empty result
       - Query succeeded but returned zero rows
       -> non-fatal warning, widget shows an explicit empty state

    3. Resolution
       - No completed ETL run / no table name
       - Label or value field missing for a chart that needs one
       -> user-visible error, last-known-good data is kept

    4. Transport
       - Non-2xx response or network failure from the aggregation endpoint
       -> user-visible error, no partial data applied

    5. Coercion (silent)
       - Unparseable numeric value during conversion
       -> coerced to 0, never raised

Only categories 3 and 4 ever surface as exceptions. They are caught at the
per-widget boundary in dashboard_studio/services/widget_loader.py so one failing widget
never affects its siblings.

RELATED FILES
-------------
- dashboard_studio/aggregation/filters.py: validation-droppable filters
- dashboard_studio/aggregation/results.py: raises ResultShapeError
- dashboard_studio/services/aggregation_client.py: raises TransportError
- dashboard_studio/services/widget_loader.py: catches everything per widget
"""

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ERROR CLASSIFICATION ENUMS
# =============================================================================

class ErrorCategory(Enum):
    """
    Categories of failures in a widget refresh.

    WHAT: Classifies errors so the loader can pick the right outcome.

    WHY: Empty results are warnings, resolution/transport failures are errors,
         validation and coercion failures never leave their component.
    """
    VALIDATION = "validation"        # Bad filter shape, dropped silently
    EMPTY_RESULT = "empty_result"    # Zero rows, rendered as empty state
    RESOLUTION = "resolution"        # Missing table or label/value field
    TRANSPORT = "transport"          # Aggregation endpoint failure
    COERCION = "coercion"            # Non-numeric value coerced to 0
    NOT_FOUND = "not_found"          # Unknown widget/dashboard id
    CONFLICT = "conflict"            # Duplicate widget id


# =============================================================================
# EXCEPTIONS
# =============================================================================

@dataclass
class DashboardError(Exception):
    """
    Base exception for dashboard failures.

    ATTRIBUTES:
        message: User-facing message (shown as a toast by the frontend)
        category: ErrorCategory for classification
        widget_id: Widget the failure belongs to (optional)
        details: Extra debug information for logs
    """
    message: str
    category: ErrorCategory = ErrorCategory.RESOLUTION
    widget_id: Optional[str] = None
    details: Dict[str, Any] = dataclass_field(default_factory=dict)

    def __str__(self) -> str:
        if self.widget_id:
            return f"[{self.category.value}] {self.widget_id}: {self.message}"
        return f"[{self.category.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for logs and API error bodies."""
        result: Dict[str, Any] = {
            "message": self.message,
            "category": self.category.value,
        }
        if self.widget_id:
            result["widget_id"] = self.widget_id
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class ResolutionError(DashboardError):
    """The request could not be built: no table, no completed ETL run, etc."""
    category: ErrorCategory = ErrorCategory.RESOLUTION


@dataclass
class ResultShapeError(ResolutionError):
    """
    Rows came back but cannot be shaped into the requested chart.

    Raised when the label field (chart types) or the value fields
    (every type but table) cannot be determined.
    """


@dataclass
class TransportError(DashboardError):
    """Non-2xx response or network failure talking to the aggregation endpoint."""
    category: ErrorCategory = ErrorCategory.TRANSPORT
    status_code: Optional[int] = None


@dataclass
class WidgetNotFoundError(DashboardError):
    category: ErrorCategory = ErrorCategory.NOT_FOUND


@dataclass
class DuplicateWidgetError(DashboardError):
    category: ErrorCategory = ErrorCategory.CONFLICT
