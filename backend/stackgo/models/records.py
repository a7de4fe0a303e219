"""
Table records for persisted aggregates.

Each row stores the aggregate document (`to_dict()`) next to the columns the
repositories filter and order by.
"""
from datetime import datetime
from sqlalchemy import JSON, Column, DateTime, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from stackgo.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
Document = JSON().with_variant(JSONB(), "postgresql")


class DeploymentRecord(Base):
    """Persisted Deployment aggregate."""

    __tablename__ = "deployments"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    environment_id = Column(String(100), nullable=False, index=True)
    stack_name = Column(String(255), nullable=False, index=True)
    status = Column(String(50), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    document = Column(Document, nullable=False)

    # The aggregate assigns the version; UPDATEs match on the previous one
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class ProductDeploymentRecord(Base):
    """Persisted ProductDeployment aggregate."""

    __tablename__ = "product_deployments"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    environment_id = Column(String(100), nullable=False, index=True)
    product_group_id = Column(String(255), nullable=False, index=True)
    status = Column(String(50), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    document = Column(Document, nullable=False)

    # The aggregate assigns the version; UPDATEs match on the previous one
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class HealthSnapshotRecord(Base):
    """Append-only health snapshot row."""

    __tablename__ = "health_snapshots"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    environment_id = Column(String(100), nullable=False, index=True)
    deployment_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    captured_at = Column(DateTime, nullable=False, index=True)
    document = Column(Document, nullable=False)
