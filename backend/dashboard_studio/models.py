"""SQLAlchemy ORM models.

This module defines the persisted side of dashboards: the dashboard row with
its opaque layout document, the data sources of multi-source dashboards and
the ETL run log used to resolve the table a widget reads from.

Ids are string UUIDs so the same schema runs on PostgreSQL and SQLite.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import declarative_base, relationship


# Single Base used by the entire application
Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class EtlRunStatusEnum(str, enum.Enum):
    completed = "completed"
    running = "running"
    failed = "failed"


class Dashboard(Base):
    """A dashboard built on top of one ETL's output.

    `layout` is the document written by the editor:
        {widgets, theme, pages?, activePageId?, savedMetrics?}
    It is stored as-is (camelCase); aggregation/model.py gives it a typed
    shape when loaded.

    `global_filters_config` is the JSON array of dashboard-wide filters.
    """
    __tablename__ = "dashboards"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String, nullable=False, default="")
    etl_id = Column(String(36), nullable=True, index=True)
    layout = Column(JSON, nullable=True)
    global_filters_config = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    data_sources = relationship(
        "DashboardDataSource",
        back_populates="dashboard",
        cascade="all, delete-orphan",
        order_by="DashboardDataSource.created_at",
    )

    def __str__(self):
        return self.title or self.id


class DashboardDataSource(Base):
    """One ETL output table available to a multi-source dashboard.

    Widgets pick a source with `dataSourceId`; widgets without one use the
    primary source, or the first source when none is primary.
    """
    __tablename__ = "dashboard_data_sources"

    id = Column(String(36), primary_key=True, default=_uuid)
    dashboard_id = Column(String(36), ForeignKey("dashboards.id", ondelete="CASCADE"), nullable=False, index=True)
    etl_id = Column(String(36), nullable=True)
    alias = Column(String, nullable=True)  # Friendly name shown in the editor
    schema = Column(String, nullable=False, default="etl_output")
    table_name = Column(String, nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    dashboard = relationship("Dashboard", back_populates="data_sources")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table_name}"

    def __str__(self):
        return self.alias or self.qualified_name


class EtlRunLog(Base):
    """One execution of an ETL; completed runs record where they wrote their output."""
    __tablename__ = "etl_runs_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    etl_id = Column(String(36), nullable=False, index=True)
    status = Column(String, nullable=False)  # completed, running, failed
    destination_schema = Column(String, nullable=True)
    destination_table_name = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
