"""Table-name resolution for widget requests.

WHAT:
    Decides which `schema.table` a widget reads from.

WHY:
    Dashboards come in two flavours:
    - Multi-source: the dashboard lists its data sources. A widget uses its
      `dataSourceId`, else the primary source, else the first source.
    - Single ETL: the table is the output of the ETL's latest completed run
      (`etl_runs_log`), in `destination_schema` (default `etl_output`).
    If neither yields a table the widget cannot be loaded (ResolutionError).

REFERENCES:
    - dashboard_studio/models.py (Dashboard, DashboardDataSource, EtlRunLog)
    - dashboard_studio/services/widget_loader.py (consumer)
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from dashboard_studio.aggregation.errors import ResolutionError
from dashboard_studio.aggregation.model import Widget
from dashboard_studio.models import Dashboard, DashboardDataSource, EtlRunLog, EtlRunStatusEnum

logger = logging.getLogger(__name__)

DEFAULT_ETL_SCHEMA = "etl_output"


def _pick_source(dashboard: Dashboard, widget: Optional[Widget]) -> Optional[DashboardDataSource]:
    sources = list(dashboard.data_sources or [])
    if not sources:
        return None
    by_id = {source.id: source for source in sources}
    if widget is not None and widget.data_source_id in by_id:
        return by_id[widget.data_source_id]
    if widget is not None and widget.data_source_id:
        logger.warning(
            f"[TABLE_RESOLVER] Widget {widget.id} references unknown data source "
            f"{widget.data_source_id}; using the default source"
        )
    primary = next((source for source in sources if source.is_primary), None)
    return primary or sources[0]


def latest_completed_run(db: Session, etl_id: str) -> Optional[EtlRunLog]:
    return (
        db.query(EtlRunLog)
        .filter(EtlRunLog.etl_id == etl_id)
        .filter(EtlRunLog.status == EtlRunStatusEnum.completed.value)
        .order_by(EtlRunLog.completed_at.desc())
        .first()
    )


def resolve_table_name(
    db: Session,
    dashboard: Dashboard,
    widget: Optional[Widget] = None,
    default_schema: str = DEFAULT_ETL_SCHEMA,
) -> str:
    """Return the fully qualified table a widget reads from.

    Raises:
        ResolutionError: no data source and no completed ETL run
    """
    source = _pick_source(dashboard, widget)
    if source is not None:
        return f"{source.schema or default_schema}.{source.table_name}"

    widget_id = widget.id if widget is not None else None
    if not dashboard.etl_id:
        raise ResolutionError(
            message="This dashboard has no data source.",
            widget_id=widget_id,
            details={"dashboard_id": dashboard.id},
        )

    run = latest_completed_run(db, dashboard.etl_id)
    if run is None or not run.destination_table_name:
        raise ResolutionError(
            message="There is no completed ETL run for this dashboard.",
            widget_id=widget_id,
            details={"dashboard_id": dashboard.id, "etl_id": dashboard.etl_id},
        )

    schema = run.destination_schema or default_schema
    return f"{schema}.{run.destination_table_name}"
