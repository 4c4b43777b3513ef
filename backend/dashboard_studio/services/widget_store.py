"""Widget/Layout Store.

WHAT:
    In-memory, ordered collection of the widgets of one dashboard.
    Adds, removes, reorders and patches widgets, and applies the results of
    widget loads.

WHY:
    Every mutation of the widget list must keep two invariants:
    - ids are unique
    - `grid_order` is always the contiguous sequence 0..n-1, matching list order
    Keeping that logic in one class means the routers and the loader never
    re-index by hand.

CONCURRENCY:
    Widget loads run concurrently (one asyncio task per widget). Each widget
    has a generation counter:
        gen = store.begin_load(widget_id)      # bump, mark loading
        ... await the endpoint ...
        store.apply_load(widget_id, gen, result)
    A response is applied only if the widget still exists and no newer load
    (or config update) started meanwhile. Late responses are discarded.

PERSISTENCE:
    Runtime fields (`rows`, `config`, `columns`, `isLoading`, `facetValues`)
    are never persisted; `to_documents()` strips them.

REFERENCES:
    - dashboard_studio/aggregation/model.py (Widget, DashboardLayout)
    - dashboard_studio/services/widget_loader.py (begin_load / apply_load)
    - dashboard_studio/routers/dashboards.py (HTTP surface)
"""

import logging
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

from pydantic.alias_generators import to_camel

from dashboard_studio.aggregation.errors import DuplicateWidgetError, WidgetNotFoundError
from dashboard_studio.aggregation.model import DashboardLayout, Widget
from dashboard_studio.aggregation.results import ProcessedResult

logger = logging.getLogger(__name__)


RUNTIME_KEYS = ("rows", "config", "columns", "isLoading", "facetValues")

# Keys a patch may not change
PROTECTED_KEYS = ("id", "gridOrder")


def strip_runtime(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a widget document without runtime-only keys."""
    return {k: v for k, v in document.items() if k not in RUNTIME_KEYS}


class WidgetStore:
    """Ordered widget collection with grid-order and generation bookkeeping.

    Usage:
        store = WidgetStore.from_layout(layout)
        store.add(Widget(type="bar", title="Sales"))
        store.reorder(widget_id, "up")
        layout_doc = layout_to_document(layout, store)
    """

    def __init__(self, widgets: Iterable[Widget] = ()):
        self._widgets: List[Widget] = []
        self._generations: Dict[str, int] = {}
        for widget in widgets:
            self.add(widget)

    # =========================================================================
    # LOAD / SAVE
    # =========================================================================

    @classmethod
    def from_layout(cls, layout: DashboardLayout) -> "WidgetStore":
        """Build a store from a persisted layout.

        Widgets are sorted by `grid_order` (a missing one counts as the
        widget's array position; ties keep array order), then re-indexed.
        """
        indexed = list(enumerate(layout.widgets))
        indexed.sort(key=lambda pair: (
            pair[1].grid_order if pair[1].grid_order is not None else pair[0],
            pair[0],
        ))
        store = cls()
        for _, widget in indexed:
            store.add(widget.model_copy(deep=True))
        return store

    def to_documents(self) -> List[Dict[str, Any]]:
        """Widgets as persisted JSON documents (camelCase, runtime fields stripped)."""
        return [strip_runtime(widget.to_document()) for widget in self._widgets]

    # =========================================================================
    # QUERIES
    # =========================================================================

    def __len__(self) -> int:
        return len(self._widgets)

    def __contains__(self, widget_id: object) -> bool:
        return any(widget.id == widget_id for widget in self._widgets)

    def list(self) -> List[Widget]:
        """Widgets in grid order."""
        return list(self._widgets)

    def data_widgets(self) -> List[Widget]:
        """Widgets whose data comes from the aggregation endpoints."""
        return [widget for widget in self._widgets if widget.is_data_widget]

    def get(self, widget_id: str) -> Widget:
        return self._widgets[self._index_of(widget_id)]

    def _index_of(self, widget_id: str) -> int:
        for index, widget in enumerate(self._widgets):
            if widget.id == widget_id:
                return index
        raise WidgetNotFoundError(message=f"Widget '{widget_id}' not found", widget_id=widget_id)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add(self, widget: Widget) -> Widget:
        """Append a widget at the end of the grid.

        Raises:
            DuplicateWidgetError: a widget with the same id already exists
        """
        if widget.id in self:
            raise DuplicateWidgetError(
                message=f"Widget '{widget.id}' already exists",
                widget_id=widget.id,
            )
        widget.grid_order = len(self._widgets)
        self._widgets.append(widget)
        self._generations[widget.id] = 0
        logger.debug(f"[WIDGET_STORE] Added {widget.type.value} widget {widget.id} at {widget.grid_order}")
        return widget

    def remove(self, widget_id: str) -> Widget:
        index = self._index_of(widget_id)
        removed = self._widgets.pop(index)
        self._generations.pop(widget_id, None)
        self._reindex()
        logger.debug(f"[WIDGET_STORE] Removed widget {widget_id}")
        return removed

    def reorder(self, widget_id: str, direction: Literal["up", "down"]) -> bool:
        """Swap a widget with its neighbour.

        Returns:
            True if the widget moved, False at either end of the grid
        """
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        index = self._index_of(widget_id)
        target = index - 1 if direction == "up" else index + 1
        if target < 0 or target >= len(self._widgets):
            return False
        self._widgets[index], self._widgets[target] = self._widgets[target], self._widgets[index]
        self._reindex()
        return True

    def update(self, widget_id: str, patch: Mapping[str, Any]) -> Widget:
        """Merge a partial widget document into an existing widget.

        `id` and `gridOrder` cannot be patched (use reorder). The merged
        document is re-validated, so an invalid patch raises a pydantic
        ValidationError and leaves the widget untouched. Any in-flight load of
        the widget is invalidated.
        """
        index = self._index_of(widget_id)
        current = self._widgets[index]

        merged = current.model_dump(by_alias=True)
        for key, value in patch.items():
            camel_key = to_camel(key) if "_" in key else key
            if camel_key in PROTECTED_KEYS:
                continue
            merged[camel_key] = value

        updated = Widget.model_validate(merged)
        updated.grid_order = index
        self._widgets[index] = updated
        self._generations[widget_id] = self._generations.get(widget_id, 0) + 1
        return updated

    def _reindex(self) -> None:
        for index, widget in enumerate(self._widgets):
            widget.grid_order = index

    # =========================================================================
    # LOAD GENERATIONS
    # =========================================================================

    def generation(self, widget_id: str) -> int:
        self._index_of(widget_id)
        return self._generations.get(widget_id, 0)

    def begin_load(self, widget_id: str) -> int:
        """Start a load: bump the widget's generation and mark it loading."""
        widget = self.get(widget_id)
        generation = self._generations.get(widget_id, 0) + 1
        self._generations[widget_id] = generation
        widget.is_loading = True
        return generation

    def _is_current(self, widget_id: str, generation: int) -> bool:
        if widget_id not in self:
            logger.warning(f"[WIDGET_STORE] Discarding response for removed widget {widget_id}")
            return False
        current = self._generations.get(widget_id, 0)
        if current != generation:
            logger.warning(
                f"[WIDGET_STORE] Discarding stale response for widget {widget_id} "
                f"(generation {generation}, current {current})"
            )
            return False
        return True

    def apply_load(self, widget_id: str, generation: int, result: ProcessedResult) -> bool:
        """Apply a processed result if it belongs to the latest load.

        Returns:
            True when applied, False when discarded as stale
        """
        if not self._is_current(widget_id, generation):
            return False
        widget = self.get(widget_id)
        widget.rows = result.rows
        widget.config = result.config
        widget.columns = result.columns
        widget.is_loading = False
        return True

    def fail_load(self, widget_id: str, generation: int) -> bool:
        """Clear the loading flag after a failed load, keeping last-known-good data."""
        if not self._is_current(widget_id, generation):
            return False
        self.get(widget_id).is_loading = False
        return True


def layout_to_document(layout: DashboardLayout, store: Optional[WidgetStore] = None) -> Dict[str, Any]:
    """Persisted layout document; widgets come from `store` when given."""
    document = layout.to_document()
    if store is not None:
        document["widgets"] = store.to_documents()
    else:
        document["widgets"] = [strip_runtime(w) for w in document.get("widgets", [])]
    return document
