"""
Filter Normalizer
=================

Validates a user-authored filter and rewrites its value into the canonical
shape its operator requires.

WHY THIS FILE EXISTS
--------------------
Filters come from free-form editor inputs: month names typed in Spanish,
years as strings, dates in whatever format, comma-separated IN lists. The
aggregation endpoint expects one exact shape per operator family. Invalid
filters are DROPPED (return None), never raised: one bad global filter must
not block a whole dashboard refresh.

OPERATOR FAMILIES
-----------------
    Comparison  =  !=  >  >=  <  <=      scalar, optional numeric cast
    Pattern     LIKE  ILIKE              scalar wrapped in %...%
    Set         IN                       list of strings
    Range       BETWEEN                  [from, to]
    Temporal    MONTH (1-12), YEAR (1900-2100), DAY (YYYY-MM-DD)
    Null check  IS  IS NOT               value forced to null

PROPERTIES
----------
- Pure: no side effects, never raises
- Idempotent: normalize_filter(normalize_filter(f)) == normalize_filter(f)

RELATED FILES
-------------
- dashboard_studio/aggregation/values.py: value variants
- dashboard_studio/aggregation/request.py: builds the filter pool and calls normalize_filters()
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from dashboard_studio.aggregation.model import Filter, FilterOperator
from dashboard_studio.aggregation.values import (
    FilterValue,
    ListValue,
    NullValue,
    RangeValue,
    ScalarValue,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MONTH_NAMES = {
    "ENERO": 1,
    "FEBRERO": 2,
    "MARZO": 3,
    "ABRIL": 4,
    "MAYO": 5,
    "JUNIO": 6,
    "JULIO": 7,
    "AGOSTO": 8,
    "SEPTIEMBRE": 9,
    "SETIEMBRE": 9,  # alternate spelling
    "OCTUBRE": 10,
    "NOVIEMBRE": 11,
    "DICIEMBRE": 12,
}

YEAR_MIN = 1900
YEAR_MAX = 2100

DAY_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

OPERATOR_ALIASES = {"<>": "!="}

COMPARISON_OPERATORS = {
    FilterOperator.EQUALS,
    FilterOperator.NOT_EQUALS,
    FilterOperator.GREATER_THAN,
    FilterOperator.GREATER_THAN_OR_EQUALS,
    FilterOperator.LESS_THAN,
    FilterOperator.LESS_THAN_OR_EQUALS,
}
PATTERN_OPERATORS = {FilterOperator.LIKE, FilterOperator.ILIKE}
TEMPORAL_OPERATORS = {FilterOperator.MONTH, FilterOperator.YEAR, FilterOperator.DAY}
NULL_OPERATORS = {FilterOperator.IS, FilterOperator.IS_NOT}

# Operators whose value shape is fixed; a numeric cast never applies to them
UNCASTABLE_OPERATORS = TEMPORAL_OPERATORS | NULL_OPERATORS


# =============================================================================
# NORMALIZED FILTER
# =============================================================================

@dataclass(frozen=True)
class NormalizedFilter:
    """
    A filter in the exact shape the aggregation endpoint expects.

    WIRE FORMAT (to_payload):
        {"field": "amount", "operator": ">=", "value": 100, "cast": "numeric"}
    """
    field: str
    operator: FilterOperator
    value: FilterValue
    cast: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value.to_wire(),
        }
        if self.cast:
            payload["cast"] = self.cast
        return payload


FilterInput = Union[Filter, NormalizedFilter, Dict[str, Any]]


# =============================================================================
# VALUE PARSERS
# =============================================================================

def _parse_int(value: Any) -> Optional[int]:
    """Parse an integral number from int, float or numeric string; None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if math.isfinite(number) and number.is_integer():
            return int(number)
    return None


def parse_month(value: Any) -> Optional[int]:
    """
    Parse a month number from 1-12, "03" or a Spanish month name.

    Examples:
        >>> parse_month("marzo")
        3
        >>> parse_month(" Setiembre ")
        9
        >>> parse_month("13") is None
        True
    """
    if isinstance(value, str):
        text = value.strip().upper()
        if text in MONTH_NAMES:
            return MONTH_NAMES[text]
        value = text
    month = _parse_int(value)
    if month is None or not 1 <= month <= 12:
        return None
    return month


def parse_year(value: Any) -> Optional[int]:
    year = _parse_int(value)
    if year is None or not YEAR_MIN <= year <= YEAR_MAX:
        return None
    return year


def parse_day(value: Any) -> Optional[str]:
    """Accept only strict `YYYY-MM-DD` strings (2024-1-5 is rejected)."""
    text = str(value if value is not None else "").strip()
    if not DAY_PATTERN.fullmatch(text):
        return None
    return text


def wrap_like_value(value: Any) -> Optional[str]:
    """
    Wrap user text in `%...%` wildcards for LIKE / ILIKE.

    Empty text becomes None (never "%%"); already wrapped text is kept.
    """
    if value is None:
        return None
    text = str(value)
    if text == "":
        return None
    if len(text) >= 2 and text.startswith("%") and text.endswith("%"):
        return text
    return f"%{text}%"


def _split_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if value is None:
        return []
    return [value]


def normalize_operator(operator: Any) -> Optional[FilterOperator]:
    """Canonical FilterOperator for raw operator text (`"is  not"`, `"<>"`, `"ilike"`)."""
    if isinstance(operator, FilterOperator):
        return operator
    text = " ".join(str(operator or "=").split()).upper()
    text = OPERATOR_ALIASES.get(text, text)
    try:
        return FilterOperator(text)
    except ValueError:
        return None


# =============================================================================
# NORMALIZATION
# =============================================================================

def _temporal_value(operator: FilterOperator, raw: Any) -> Optional[FilterValue]:
    if operator == FilterOperator.DAY:
        day = parse_day(raw)
        return ScalarValue(day) if day is not None else None

    parser = parse_month if operator == FilterOperator.MONTH else parse_year
    if isinstance(raw, (list, tuple)):
        parsed = [parser(item) for item in raw]
        items = tuple(p for p in parsed if p is not None)
        return ListValue(items) if items else None
    parsed_single = parser(raw)
    return ScalarValue(parsed_single) if parsed_single is not None else None


def _value_for(operator: FilterOperator, raw: Any) -> Optional[FilterValue]:
    """Canonical value variant for the operator, or None when the value is unusable."""
    if operator in NULL_OPERATORS:
        return NullValue()

    if operator in TEMPORAL_OPERATORS:
        return _temporal_value(operator, raw)

    if operator == FilterOperator.IN:
        items = tuple(str(item) for item in _split_list(raw) if item is not None and item != "")
        return ListValue(items) if items else None

    if operator == FilterOperator.BETWEEN:
        if isinstance(raw, dict):
            start, end = raw.get("from"), raw.get("to")
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            start, end = raw
        else:
            return None
        if start is None and end is None:
            return None
        return RangeValue(start, end)

    if operator in PATTERN_OPERATORS:
        return ScalarValue(wrap_like_value(raw))

    return ScalarValue(raw)


def _as_filter(candidate: FilterInput) -> Optional[Filter]:
    if isinstance(candidate, Filter):
        return candidate
    if isinstance(candidate, NormalizedFilter):
        return Filter(
            field=candidate.field,
            operator=candidate.operator.value,
            value=candidate.value.to_wire(),
            convert_to_number=candidate.cast == "numeric",
        )
    try:
        return Filter.model_validate(candidate)
    except ValidationError:
        return None


def normalize_filter(candidate: FilterInput) -> Optional[NormalizedFilter]:
    """
    Normalize one filter; None means "drop it".

    Args:
        candidate: Filter model, raw dict (camelCase) or an already
            normalized filter

    Returns:
        NormalizedFilter, or None when field/operator/value is unusable

    Examples:
        >>> normalize_filter({"field": "fecha", "operator": "MONTH", "value": "marzo"}).value
        ScalarValue(value=3)
        >>> normalize_filter({"field": "fecha", "operator": "DAY", "value": "2024-1-5"}) is None
        True
    """
    flt = _as_filter(candidate)
    if flt is None or not flt.field:
        logger.debug(f"[FILTERS] Dropping filter without a usable field: {candidate!r}")
        return None

    operator = normalize_operator(flt.operator)
    if operator is None:
        logger.debug(f"[FILTERS] Dropping filter on '{flt.field}': unknown operator {flt.operator!r}")
        return None

    value = _value_for(operator, flt.value)
    if value is None:
        logger.debug(
            f"[FILTERS] Dropping {operator.value} filter on '{flt.field}': invalid value {flt.value!r}"
        )
        return None

    cast = "numeric" if flt.convert_to_number and operator not in UNCASTABLE_OPERATORS else None
    return NormalizedFilter(field=flt.field, operator=operator, value=value, cast=cast)


def normalize_filters(pool: Iterable[FilterInput]) -> List[NormalizedFilter]:
    """Normalize every filter independently, keeping order and dropping invalid ones."""
    normalized = []
    for candidate in pool:
        result = normalize_filter(candidate)
        if result is not None:
            normalized.append(result)
    return normalized


# =============================================================================
# FILTER POOL
# =============================================================================

def _has_value(flt: Filter) -> bool:
    """Global filters left blank in the filter panel are inactive."""
    if normalize_operator(flt.operator) in NULL_OPERATORS:
        return True
    if flt.value is None:
        return False
    if isinstance(flt.value, str) and flt.value.strip() == "":
        return False
    if isinstance(flt.value, (list, tuple)) and len(flt.value) == 0:
        return False
    return True


def build_filter_pool(
    local_filters: Optional[Iterable[Filter]],
    global_filters: Optional[Iterable[Filter]],
    exclude_global: bool = False,
) -> List[Filter]:
    """
    Combine widget-local and dashboard-wide filters.

    Local filters come first, then global ones (unless the widget excludes
    them). Filters on the same field are NOT de-duplicated: both are sent and
    the backend ANDs them.
    """
    pool = list(local_filters or [])
    if not exclude_global:
        pool.extend(f for f in (global_filters or []) if _has_value(f))
    return pool
