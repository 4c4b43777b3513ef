"""
Filter Value Shapes
===================

Tagged union for the value of a normalized filter.

The raw `Filter.value` changes shape with the operator (a scalar for `=`,
a list for `IN`, a pair for `BETWEEN`, nothing for `IS NULL`). Normalization
turns it into exactly one of these variants so serialization is exhaustive:

    ScalarValue(v)        =, !=, >, >=, <, <=, LIKE, ILIKE, DAY, MONTH, YEAR
    ListValue((a, b, c))  IN, and MONTH/YEAR given several values
    RangeValue(a, b)      BETWEEN
    NullValue()           IS, IS NOT

Related files:
- dashboard_studio/aggregation/filters.py: builds these from raw values
"""

from dataclasses import dataclass
from typing import Any, Tuple, Union


@dataclass(frozen=True)
class ScalarValue:
    value: Any

    def to_wire(self) -> Any:
        return self.value


@dataclass(frozen=True)
class ListValue:
    items: Tuple[Any, ...]

    def to_wire(self) -> Any:
        return list(self.items)


@dataclass(frozen=True)
class RangeValue:
    start: Any
    end: Any

    def to_wire(self) -> Any:
        # The aggregation endpoint accepts both [from, to] and {from, to};
        # the list form is the canonical one.
        return [self.start, self.end]


@dataclass(frozen=True)
class NullValue:

    def to_wire(self) -> Any:
        return None


FilterValue = Union[ScalarValue, ListValue, RangeValue, NullValue]
