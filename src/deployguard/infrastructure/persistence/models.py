"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    func,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class DeploymentRecordORM(Base):
    __tablename__ = "deployment_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(80), nullable=False, index=True)
    target = Column(String(255), nullable=False, index=True)
    outcome = Column(String(50), nullable=False)
    stage = Column(String(50), nullable=False)
    error_kind = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True, default="")
    record_data = Column(JSON, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_deployment_records_target_timestamp", "target", "timestamp"),
    )


class ScheduledDeploymentORM(Base):
    __tablename__ = "scheduled_deployments"

    id = Column(String(80), primary_key=True)
    target = Column(String(255), nullable=False, index=True)
    status = Column(String(50), nullable=False, index=True)
    requested_by = Column(String(255), nullable=False, default="")
    scheduled_time = Column(DateTime(timezone=True), nullable=False)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    scheduled_data = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_scheduled_deployments_status_time", "status", "scheduled_time"),
    )


class SnapshotORM(Base):
    __tablename__ = "snapshots"

    snapshot_id = Column(String(80), primary_key=True)
    deployment_id = Column(String(80), nullable=False, index=True)
    target = Column(String(255), nullable=False, index=True)
    components_data = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
