"""Pytest configuration for dashboard_studio integration tests

WHAT: Provides shared fixtures for HTTP endpoint and database-backed tests
WHY: Ensures consistent test setup, database isolation, and a fake aggregation
     service so no test ever talks to the network
REFERENCES:
    - dashboard_studio/main.py: FastAPI application
    - dashboard_studio/database.py: Database configuration
    - dashboard_studio/deps.py: Dependency injection (get_aggregation_client)
"""

import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend is in path
import sys
from pathlib import Path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("AGGREGATION_API_BASE_URL", "http://aggregation.test")


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    # StaticPool: the TestClient runs sync endpoints in a worker thread, and
    # every thread must see the same in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    from dashboard_studio.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Aggregation Service Fixtures
# ============================================================================

class FakeAggregationBackend:
    """Stands in for the external aggregation endpoints.

    Responses are configured per endpoint path; every request body is recorded.
    """

    def __init__(self):
        self.responses: Dict[str, Tuple[int, Any]] = {
            "/api/dashboard/aggregate-data": (200, []),
            "/api/dashboard/raw-data": (200, []),
            "/api/dashboard/distinct-values": (200, []),
        }
        self.requests: List[Tuple[str, Dict[str, Any]]] = []

    def respond(self, path: str, payload: Any, status_code: int = 200) -> None:
        self.responses[path] = (status_code, payload)

    def bodies(self, path: str) -> List[Dict[str, Any]]:
        return [body for request_path, body in self.requests if request_path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.url.path, json.loads(request.content)))
        status_code, payload = self.responses.get(request.url.path, (404, {"error": "unknown endpoint"}))
        return httpx.Response(status_code, json=payload)


@pytest.fixture
def aggregation_backend() -> FakeAggregationBackend:
    return FakeAggregationBackend()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session, aggregation_backend):
    """Create FastAPI test application."""
    from dashboard_studio.main import create_app

    test_app = create_app()

    # Override database dependency
    from dashboard_studio.database import get_db

    def override_get_db():
        try:
            yield test_db_session
        finally:
            test_db_session.close()

    test_app.dependency_overrides[get_db] = override_get_db

    # Override the aggregation client with one backed by the fake service
    from dashboard_studio.deps import get_aggregation_client
    from dashboard_studio.services.aggregation_client import AggregationClient

    async def override_get_aggregation_client():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(aggregation_backend))
        try:
            yield AggregationClient(base_url="http://aggregation.test", http_client=http_client)
        finally:
            await http_client.aclose()

    test_app.dependency_overrides[get_aggregation_client] = override_get_aggregation_client

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Model Fixtures
# ============================================================================

SALES_LAYOUT = {
    "theme": {"mode": "light"},
    "widgets": [
        {
            "id": "w-region",
            "type": "bar",
            "title": "Sales by region",
            "gridOrder": 0,
            "aggregationConfig": {
                "enabled": True,
                "dimension": "region",
                "metrics": [
                    {
                        "id": "m-sales",
                        "field": "monto",
                        "func": "SUM",
                        "alias": "ventas",
                        "conversionType": "divide",
                        "conversionFactor": 1000,
                        "precision": 1,
                    }
                ],
            },
        },
        {
            "id": "w-total",
            "type": "kpi",
            "title": "Orders",
            "gridOrder": 1,
            "aggregationConfig": {
                "enabled": True,
                "metrics": [{"id": "m-count", "field": "pedido_id", "func": "COUNT(DISTINCT", "alias": "pedidos"}],
            },
        },
        {"id": "w-note", "type": "text", "title": "Notes", "gridOrder": 2, "content": "Hola"},
    ],
}

SALES_GLOBAL_FILTERS = [
    {"id": "f-year", "field": "fecha", "operator": "YEAR", "value": "2024"},
    {"id": "f-region", "field": "region", "operator": "IN", "value": ""},
]


@pytest.fixture
def test_etl_run(test_db_session):
    """Create a completed ETL run."""
    from dashboard_studio.models import EtlRunLog, EtlRunStatusEnum

    run = EtlRunLog(
        id="run-2",
        etl_id="etl-sales",
        status=EtlRunStatusEnum.completed.value,
        destination_schema="etl_output",
        destination_table_name="ventas_v2",
        started_at=datetime.utcnow() - timedelta(minutes=5),
        completed_at=datetime.utcnow(),
    )

    test_db_session.add(run)
    test_db_session.commit()
    test_db_session.refresh(run)

    return run


@pytest.fixture
def test_dashboard(test_db_session, test_etl_run):
    """Create a single-ETL dashboard with a bar, a KPI and a text widget."""
    from dashboard_studio.models import Dashboard

    dashboard = Dashboard(
        id="dash-sales",
        title="Sales",
        etl_id=test_etl_run.etl_id,
        layout=json.loads(json.dumps(SALES_LAYOUT)),
        global_filters_config=json.loads(json.dumps(SALES_GLOBAL_FILTERS)),
        created_at=datetime.utcnow(),
    )

    test_db_session.add(dashboard)
    test_db_session.commit()
    test_db_session.refresh(dashboard)

    return dashboard


@pytest.fixture
def test_empty_dashboard(test_db_session):
    """Create a dashboard without layout, data sources or ETL."""
    from dashboard_studio.models import Dashboard

    dashboard = Dashboard(id="dash-empty", title="Empty", created_at=datetime.utcnow())

    test_db_session.add(dashboard)
    test_db_session.commit()
    test_db_session.refresh(dashboard)

    return dashboard


# ============================================================================
# Notes
# ============================================================================
#
# USAGE:
#
# # Basic HTTP test
# def test_get_dashboard(client, test_dashboard):
#     response = client.get(f"/dashboards/{test_dashboard.id}")
#     assert response.status_code == 200
#
# # Aggregation service test
# def test_refresh(client, test_dashboard, aggregation_backend):
#     aggregation_backend.respond("/api/dashboard/aggregate-data", [{"region": "Lima", "ventas": 1}])
#     response = client.post(f"/dashboards/{test_dashboard.id}/refresh")
#     assert aggregation_backend.bodies("/api/dashboard/aggregate-data")
#
# # Database test
# def test_latest_run(test_db_session, test_etl_run):
#     run = latest_completed_run(test_db_session, test_etl_run.etl_id)
#     assert run.destination_table_name == "ventas_v2"
#
# ============================================================================
