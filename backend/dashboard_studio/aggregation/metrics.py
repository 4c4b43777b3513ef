"""
Metric Compiler
===============

Compiles editor metrics (`MetricEdit`) into wire metrics (`MetricRequest`).

WHY THIS FILE EXISTS
--------------------
The editor keeps presentation settings on the same record as the
aggregation definition (unit conversion, decimal precision, numeric cast).
The aggregation endpoint must only receive the wire fields, while the result
post-processor still needs the presentation ones. This module is the single
explicit step between the two:

    MetricEdit ──compile──> MetricRequest        (sent to the backend)
              └──────────> MetricPresentation   (kept for post-processing)

ALIASES
-------
Result columns are keyed by alias, so every metric gets one:
    explicit alias           -> used verbatim
    blank, regular function  -> "SUM_revenue"
    blank, FORMULA           -> "formula"
Duplicate aliases make the later metric overwrite the earlier one's column in
the result rows. They are detected and logged, not rejected.

FORMULAS
--------
A FORMULA metric references other metrics POSITIONALLY: `metric_0 / metric_1`
means "first metric divided by second". The formula text is sent verbatim and
evaluated by the backend. `MetricList` keeps those references pointing at the
same metrics when the list is reordered or a metric is removed.

RELATED FILES
-------------
- dashboard_studio/aggregation/model.py: MetricEdit
- dashboard_studio/aggregation/request.py: calls compile_metrics()
- dashboard_studio/aggregation/results.py: consumes MetricPresentation
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from dashboard_studio.aggregation.model import ConversionType, MetricEdit, NumericCast

logger = logging.getLogger(__name__)


PLACEHOLDER_PATTERN = re.compile(r"\bmetric_(\d+)\b")
# Identifiers that look like a placeholder but are not `metric_<n>`
MALFORMED_PLACEHOLDER_PATTERN = re.compile(r"\bmetric_(?![0-9]+\b)\w*")

FORMULA_DEFAULT_ALIAS = "formula"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class MetricRequest:
    """
    A metric exactly as the aggregation endpoint receives it.

    WIRE FORMAT:
        regular:  {"field": "amount", "func": "SUM", "alias": "total",
                   "condition": {...}?, "cast": "numeric"?}
        formula:  {"formula": "metric_0 / NULLIF(metric_1, 0)",
                   "alias": "ratio", "field": ""}
    """
    alias: str
    field: str = ""
    func: Optional[str] = None
    formula: Optional[str] = None
    condition: Optional[Dict[str, Any]] = None
    cast: Optional[str] = None

    @property
    def is_formula(self) -> bool:
        return self.formula is not None

    def to_payload(self) -> Dict[str, Any]:
        if self.is_formula:
            return {"formula": self.formula, "alias": self.alias, "field": ""}
        payload: Dict[str, Any] = {"field": self.field, "func": self.func, "alias": self.alias}
        if self.condition is not None:
            payload["condition"] = self.condition
        if self.cast:
            payload["cast"] = self.cast
        return payload


@dataclass
class MetricPresentation:
    """Presentation settings of one metric, kept client-side and matched by alias."""
    alias: str
    conversion_type: ConversionType = ConversionType.NONE
    conversion_factor: float = 1.0
    precision: Optional[int] = None

    @property
    def is_identity(self) -> bool:
        return self.conversion_type == ConversionType.NONE and self.precision is None


@dataclass
class CompiledMetrics:
    """Output of compile_metric_set(): wire metrics plus what stays behind."""
    requests: List[MetricRequest] = dataclass_field(default_factory=list)
    presentation: Dict[str, MetricPresentation] = dataclass_field(default_factory=dict)
    duplicate_aliases: List[str] = dataclass_field(default_factory=list)

    @property
    def aliases(self) -> List[str]:
        return [request.alias for request in self.requests]

    def to_payload(self) -> List[Dict[str, Any]]:
        return [request.to_payload() for request in self.requests]


# =============================================================================
# RESOLUTION HELPERS
# =============================================================================

def resolve_alias(metric: MetricEdit) -> str:
    """
    Alias used on the wire and as the result column name.

    Examples:
        SUM / revenue / ""        -> "SUM_revenue"
        SUM / revenue / "total"   -> "total"
        FORMULA / "" / ""         -> "formula"
    """
    if metric.alias and metric.alias.strip():
        return metric.alias
    if metric.is_formula:
        return FORMULA_DEFAULT_ALIAS
    return f"{metric.func.value}_{metric.field}"


def legacy_column_name(metric: MetricEdit) -> str:
    """`SUM(revenue)`: the column name older backends return for alias-less metrics."""
    return f"{metric.func.value}({metric.field})"


def resolve_cast(metric: MetricEdit) -> Optional[str]:
    """
    Numeric cast hint for the backend.

    - "sanitize" when numeric_cast is sanitize
    - "numeric" when numeric_cast is numeric, or any other non-"none" value
      (legacy layouts stored booleans and free text here)
    - "sanitize" when non-numeric strings are allowed and no cast was chosen
    - None otherwise
    """
    raw = metric.numeric_cast
    if raw is not None:
        normalized = str(raw).strip().lower()
        if normalized == NumericCast.SANITIZE.value:
            return NumericCast.SANITIZE.value
        if normalized and normalized not in (NumericCast.NONE.value, "false"):
            return NumericCast.NUMERIC.value
        return None
    if metric.allow_string_as_numeric:
        return NumericCast.SANITIZE.value
    return None


def formula_placeholders(formula: str) -> List[int]:
    """Positional indexes referenced by a formula, in order of appearance."""
    return [int(match.group(1)) for match in PLACEHOLDER_PATTERN.finditer(formula or "")]


def malformed_placeholders(formula: str) -> List[str]:
    """Tokens such as `metric_a` or `metric_` that are not valid `metric_<n>` references."""
    return [match.group(0) for match in MALFORMED_PLACEHOLDER_PATTERN.finditer(formula or "")]


def presentation_for(metric: MetricEdit) -> MetricPresentation:
    factor = metric.conversion_factor
    if factor is None or factor != factor:  # None or NaN
        factor = 1.0
    return MetricPresentation(
        alias=resolve_alias(metric),
        conversion_type=metric.conversion_type or ConversionType.NONE,
        conversion_factor=float(factor),
        precision=metric.precision,
    )


# =============================================================================
# COMPILATION
# =============================================================================

def compile_metric(metric: MetricEdit) -> MetricRequest:
    """Compile a single metric. Never raises; an empty field still compiles."""
    alias = resolve_alias(metric)

    if metric.is_formula:
        formula = metric.formula or ""
        bad_tokens = malformed_placeholders(formula)
        if bad_tokens:
            logger.warning(
                f"[METRICS] Formula '{alias}' has malformed placeholders {bad_tokens}; "
                f"expected metric_<n>"
            )
        return MetricRequest(alias=alias, field="", formula=formula)

    condition = metric.condition.model_dump(mode="json") if metric.condition else None
    return MetricRequest(
        alias=alias,
        field=metric.field,
        func=metric.func.value,
        condition=condition,
        cast=resolve_cast(metric),
    )


def compile_metrics(metrics: Iterable[MetricEdit]) -> List[MetricRequest]:
    """Compile metrics preserving order (formula placeholders depend on it)."""
    return [compile_metric(metric) for metric in metrics]


def compile_metric_set(metrics: Iterable[MetricEdit]) -> CompiledMetrics:
    """
    Compile metrics and split off their presentation settings.

    Duplicate aliases are reported in `duplicate_aliases`; in the presentation
    map the later metric wins, mirroring what happens to the result columns.
    """
    metric_list = list(metrics)
    compiled = CompiledMetrics(requests=compile_metrics(metric_list))

    for metric in metric_list:
        if metric.is_formula:
            continue
        presentation = presentation_for(metric)
        compiled.presentation[presentation.alias] = presentation

    counts = Counter(compiled.aliases)
    compiled.duplicate_aliases = [alias for alias, count in counts.items() if count > 1]
    if compiled.duplicate_aliases:
        logger.warning(
            f"[METRICS] Duplicate metric aliases {compiled.duplicate_aliases}: "
            f"later metrics overwrite earlier result columns"
        )
    return compiled


# =============================================================================
# INDEXED METRIC LIST
# =============================================================================

def rewrite_formula(formula: str, index_map: Dict[int, Optional[int]]) -> str:
    """
    Re-point positional placeholders after the metric list changed.

    Args:
        formula: Formula text
        index_map: old index -> new index, or None when the metric is gone

    Placeholders missing from the map are left untouched; placeholders whose
    metric was removed become NULL.

    Example:
        >>> rewrite_formula("metric_0 / metric_1", {0: 1, 1: 0})
        'metric_1 / metric_0'
    """
    def _replace(match: re.Match) -> str:
        old = int(match.group(1))
        if old not in index_map:
            return match.group(0)
        new = index_map[old]
        return "NULL" if new is None else f"metric_{new}"

    return PLACEHOLDER_PATTERN.sub(_replace, formula)


class MetricList:
    """
    Explicitly indexed metric collection.

    Reordering, inserting or removing metrics rewrites every formula's
    `metric_<n>` placeholders so they keep referencing the same metrics.

    USAGE:
        metrics = MetricList(config.metrics)
        metrics.move("m-revenue", 0)
        config.metrics = metrics.to_list()
    """

    def __init__(self, metrics: Iterable[MetricEdit] = ()):
        self._metrics: List[MetricEdit] = list(metrics)

    def __len__(self) -> int:
        return len(self._metrics)

    def __iter__(self) -> Iterator[MetricEdit]:
        return iter(self._metrics)

    def __getitem__(self, index: int) -> MetricEdit:
        return self._metrics[index]

    def to_list(self) -> List[MetricEdit]:
        return list(self._metrics)

    def index_of(self, metric_id: str) -> int:
        for index, metric in enumerate(self._metrics):
            if metric.id == metric_id:
                return index
        raise KeyError(metric_id)

    def append(self, metric: MetricEdit) -> int:
        self._metrics.append(metric)
        return len(self._metrics) - 1

    def insert(self, index: int, metric: MetricEdit) -> int:
        index = max(0, min(index, len(self._metrics)))
        index_map = {old: (old + 1 if old >= index else old) for old in range(len(self._metrics))}
        self._metrics.insert(index, metric)
        self._rewrite(index_map, skip=index)
        return index

    def remove(self, metric_id: str) -> MetricEdit:
        removed_index = self.index_of(metric_id)
        index_map: Dict[int, Optional[int]] = {}
        for old in range(len(self._metrics)):
            if old == removed_index:
                index_map[old] = None
            else:
                index_map[old] = old - 1 if old > removed_index else old
        removed = self._metrics.pop(removed_index)
        self._rewrite(index_map)
        return removed

    def move(self, metric_id: str, new_index: int) -> None:
        old_index = self.index_of(metric_id)
        new_index = max(0, min(new_index, len(self._metrics) - 1))
        if old_index == new_index:
            return
        order = list(range(len(self._metrics)))
        order.insert(new_index, order.pop(old_index))
        index_map: Dict[int, Optional[int]] = {old: new for new, old in enumerate(order)}
        self._metrics = [self._metrics[old] for old in order]
        self._rewrite(index_map)

    def _rewrite(self, index_map: Dict[int, Optional[int]], skip: Optional[int] = None) -> None:
        for position, metric in enumerate(self._metrics):
            if position == skip or not metric.is_formula or not metric.formula:
                continue
            rewritten = rewrite_formula(metric.formula, index_map)
            if rewritten != metric.formula:
                logger.debug(f"[METRICS] Rewrote formula '{metric.formula}' -> '{rewritten}'")
                self._metrics[position] = metric.model_copy(update={"formula": rewritten})
