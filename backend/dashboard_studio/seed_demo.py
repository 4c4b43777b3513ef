"""
Demo dashboard seed script.
Creates one dashboard backed by a completed ETL run, with a few widgets that
exercise aggregation, formulas, conversions and global filters.

SAFE TO RE-RUN:
- No DELETE operations - only INSERTs
- Skips seeding if a dashboard with DEMO_TITLE already exists

Usage:
    cd backend
    python -m dashboard_studio.seed_demo
"""

import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from dashboard_studio.database import get_sync_session, init_db
from dashboard_studio import models


# =============================================================================
# CONFIGURATION
# =============================================================================

DEMO_TITLE = "Sales overview (demo)"
DEMO_SCHEMA = "etl_output"
DEMO_TABLE = "ventas_2024"


# =============================================================================
# LAYOUT
# =============================================================================

DEMO_LAYOUT = {
    "theme": {},
    "widgets": [
        {
            "id": "w-revenue-kpi",
            "type": "kpi",
            "title": "Revenue (thousands)",
            "gridOrder": 0,
            "gridSpan": 1,
            "aggregationConfig": {
                "enabled": True,
                "metrics": [
                    {
                        "id": "m-revenue",
                        "field": "monto",
                        "func": "SUM",
                        "alias": "revenue_k",
                        "conversionType": "divide",
                        "conversionFactor": 1000,
                        "precision": 1,
                    }
                ],
            },
        },
        {
            "id": "w-region-bar",
            "type": "bar",
            "title": "Revenue and margin by region",
            "gridOrder": 1,
            "gridSpan": 2,
            "color": "#6366f1",
            "aggregationConfig": {
                "enabled": True,
                "dimension": "region",
                "metrics": [
                    {"id": "m-sales", "field": "monto", "func": "SUM", "alias": "ventas"},
                    {"id": "m-cost", "field": "costo", "func": "SUM", "alias": "costo"},
                    {
                        "id": "m-margin",
                        "func": "FORMULA",
                        "alias": "margen",
                        "formula": "(metric_0 - metric_1) / NULLIF(metric_0, 0)",
                    },
                ],
                "orderBy": {"field": "ventas", "direction": "DESC"},
                "limit": 10,
            },
        },
        {
            "id": "w-monthly-line",
            "type": "line",
            "title": "Cumulative sales",
            "gridOrder": 2,
            "gridSpan": 4,
            "aggregationConfig": {
                "enabled": True,
                "dimension": "mes",
                "dateDimension": "fecha",
                "cumulative": "ytd",
                "metrics": [{"id": "m-ytd", "field": "monto", "func": "SUM", "alias": "ventas_ytd"}],
            },
        },
        {
            "id": "w-detail",
            "type": "table",
            "title": "Detail",
            "gridOrder": 3,
            "gridSpan": 4,
            "excludeGlobalFilters": True,
        },
    ],
    "savedMetrics": [],
}

DEMO_GLOBAL_FILTERS = [
    {"id": "f-year", "field": "fecha", "operator": "YEAR", "value": 2024, "inputType": "number"},
    {"id": "f-region", "field": "region", "operator": "IN", "value": "", "inputType": "select"},
]


# =============================================================================
# SEED
# =============================================================================

def seed_demo_dashboard(db: Session) -> models.Dashboard:
    existing = db.query(models.Dashboard).filter(models.Dashboard.title == DEMO_TITLE).first()
    if existing:
        print(f"Demo dashboard already exists: {existing.id}")
        return existing

    etl_id = str(uuid.uuid4())
    db.add(models.EtlRunLog(
        etl_id=etl_id,
        status=models.EtlRunStatusEnum.completed.value,
        destination_schema=DEMO_SCHEMA,
        destination_table_name=DEMO_TABLE,
        completed_at=datetime.utcnow(),
    ))

    dashboard = models.Dashboard(
        title=DEMO_TITLE,
        etl_id=etl_id,
        layout=DEMO_LAYOUT,
        global_filters_config=DEMO_GLOBAL_FILTERS,
    )
    db.add(dashboard)
    db.commit()
    db.refresh(dashboard)
    print(f"Created demo dashboard {dashboard.id} on {DEMO_SCHEMA}.{DEMO_TABLE}")
    return dashboard


def seed_demo():
    init_db()
    with get_sync_session() as db:
        seed_demo_dashboard(db)


if __name__ == "__main__":
    seed_demo()
