"""Dashboard persistence.

WHAT:
    Loads and saves the layout document and the global filters of a
    dashboard row.

WHY:
    The layout column is an opaque JSON document written by many editor
    versions. Parsing it into `DashboardLayout` (and back, without runtime
    fields) happens here so routers only deal with typed models.

REFERENCES:
    - dashboard_studio/models.py (Dashboard)
    - dashboard_studio/services/widget_store.py (layout_to_document)
"""

import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from dashboard_studio.aggregation.errors import DashboardError, ErrorCategory
from dashboard_studio.aggregation.model import DashboardLayout, Filter
from dashboard_studio.models import Dashboard
from dashboard_studio.services.widget_store import WidgetStore, layout_to_document

logger = logging.getLogger(__name__)


class DashboardRepository:
    """Typed access to dashboard rows."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, dashboard_id: str) -> Dashboard:
        dashboard = self.db.query(Dashboard).filter(Dashboard.id == dashboard_id).first()
        if dashboard is None:
            raise DashboardError(
                message=f"Dashboard '{dashboard_id}' not found",
                category=ErrorCategory.NOT_FOUND,
            )
        return dashboard

    # =========================================================================
    # LAYOUT
    # =========================================================================

    def load_layout(self, dashboard: Dashboard) -> DashboardLayout:
        """Parse the stored layout; a missing layout is an empty dashboard.

        Raises:
            DashboardError: the stored document is not a valid layout
        """
        document = dashboard.layout or {}
        try:
            return DashboardLayout.model_validate(document)
        except ValidationError as e:
            logger.error(f"[DASHBOARDS] Invalid layout stored for dashboard {dashboard.id}: {e}")
            raise DashboardError(
                message="The stored dashboard layout is invalid.",
                category=ErrorCategory.VALIDATION,
                details={"dashboard_id": dashboard.id, "error_count": e.error_count()},
            ) from e

    def load_store(self, dashboard: Dashboard) -> tuple:
        """(layout, WidgetStore) for a dashboard."""
        layout = self.load_layout(dashboard)
        return layout, WidgetStore.from_layout(layout)

    def save_layout(
        self,
        dashboard: Dashboard,
        layout: DashboardLayout,
        store: Optional[WidgetStore] = None,
    ) -> dict:
        """Persist the layout (runtime widget fields stripped) and return the stored document."""
        document = layout_to_document(layout, store)
        dashboard.layout = document
        self.db.add(dashboard)
        self.db.commit()
        self.db.refresh(dashboard)
        logger.info(f"[DASHBOARDS] Saved layout of {dashboard.id} ({len(document['widgets'])} widgets)")
        return document

    # =========================================================================
    # GLOBAL FILTERS
    # =========================================================================

    def load_global_filters(self, dashboard: Dashboard) -> List[Filter]:
        """Parse stored global filters, skipping entries that are not filters at all."""
        filters = []
        for raw in dashboard.global_filters_config or []:
            try:
                filters.append(Filter.model_validate(raw))
            except ValidationError:
                logger.warning(f"[DASHBOARDS] Skipping malformed global filter on {dashboard.id}: {raw!r}")
        return filters

    def save_global_filters(self, dashboard: Dashboard, filters: Iterable[Filter]) -> List[Any]:
        documents = [flt.to_document() for flt in filters]
        dashboard.global_filters_config = documents
        self.db.add(dashboard)
        self.db.commit()
        self.db.refresh(dashboard)
        return documents
