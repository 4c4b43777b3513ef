"""Saved metric templates.

WHAT:
    Named, reusable metric definitions stored in the layout document
    (`savedMetrics`). A template can be instantiated into any widget.

WHY:
    Users build the same metric (e.g. "Revenue in thousands") on many widgets.
    Templates are upserted by name, and every instantiation gets a fresh metric
    id so two widgets never share a metric identity.

REFERENCES:
    - dashboard_studio/aggregation/model.py (SavedMetric, MetricEdit)
    - dashboard_studio/routers/dashboards.py (saved-metrics endpoints)
"""

import logging
from typing import List, Optional

from dashboard_studio.aggregation.errors import DashboardError, ErrorCategory
from dashboard_studio.aggregation.model import (
    AggregationConfig,
    MetricEdit,
    SavedMetric,
    new_id,
)
from dashboard_studio.services.widget_store import WidgetStore

logger = logging.getLogger(__name__)


class SavedMetricLibrary:
    """Saved metric templates of one dashboard."""

    def __init__(self, saved: Optional[List[SavedMetric]] = None):
        self._saved: List[SavedMetric] = list(saved or [])

    def list(self) -> List[SavedMetric]:
        return list(self._saved)

    def get(self, saved_id: str) -> SavedMetric:
        for saved in self._saved:
            if saved.id == saved_id:
                return saved
        raise DashboardError(
            message=f"Saved metric '{saved_id}' not found",
            category=ErrorCategory.NOT_FOUND,
        )

    def save_template(self, name: str, metric: MetricEdit) -> SavedMetric:
        """Save a metric under a name; an existing template with that name is replaced.

        Raises:
            DashboardError: blank name (validation)
        """
        trimmed = (name or "").strip()
        if not trimmed:
            raise DashboardError(
                message="A saved metric needs a name",
                category=ErrorCategory.VALIDATION,
            )

        template = metric.model_copy(deep=True)
        for index, existing in enumerate(self._saved):
            if existing.name == trimmed:
                updated = SavedMetric(id=existing.id, name=trimmed, metric=template)
                self._saved[index] = updated
                logger.info(f"[SAVED_METRICS] Updated template '{trimmed}'")
                return updated

        created = SavedMetric(name=trimmed, metric=template)
        self._saved.append(created)
        logger.info(f"[SAVED_METRICS] Saved template '{trimmed}' as {created.id}")
        return created

    def instantiate(self, saved_id: str) -> MetricEdit:
        """Clone a template's metric with a fresh id."""
        saved = self.get(saved_id)
        return saved.metric.model_copy(deep=True, update={"id": new_id("m")})

    def add_to_widget(self, store: WidgetStore, widget_id: str, saved_id: str) -> MetricEdit:
        """Append an instance of a template to a widget's metrics."""
        widget = store.get(widget_id)
        metric = self.instantiate(saved_id)
        config = widget.aggregation_config or AggregationConfig(enabled=True)
        metrics = [m.model_dump(by_alias=True) for m in config.metrics]
        metrics.append(metric.model_dump(by_alias=True))
        config_doc = config.model_dump(by_alias=True)
        config_doc["metrics"] = metrics
        store.update(widget_id, {"aggregationConfig": config_doc})
        return metric
