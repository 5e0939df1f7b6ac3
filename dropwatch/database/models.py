"""
SQLAlchemy models for the dropwatch database.

Tables:
- configurations: tenant check rules and their schedule progression
- executions: one row per check attempt, kept for a retention window
- discovered_files: one row per (tenant, configuration, url, discovery date)
- leases: time-bound locks shared by scheduler instances
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """DateTime column that always stores and returns aware UTC values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfigurationRecord(Base):
    """
    Tenant-owned check rule.

    Connection settings are stored as JSON and hold secret references only.
    ``last_evaluated_at``/``next_due_at`` are written by the scheduler loop.
    """

    __tablename__ = "configurations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    protocol: Mapped[str] = mapped_column(String(32), nullable=False)
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    path_pattern: Mapped[str] = mapped_column(String(1024), nullable=False)
    name_pattern: Mapped[str] = mapped_column(String(512), nullable=False)
    file_extension: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    schedule_expression: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    next_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "protocol": self.protocol,
            "path_pattern": self.path_pattern,
            "name_pattern": self.name_pattern,
            "file_extension": self.file_extension,
            "schedule_expression": self.schedule_expression,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "last_evaluated_at": self.last_evaluated_at.isoformat() if self.last_evaluated_at else None,
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ExecutionRecord(Base):
    """
    One check attempt.

    Status only moves forward: Pending -> Running -> Completed | Failed.
    """

    __tablename__ = "executions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    configuration_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    files_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolved_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    resolved_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "files_found": self.files_found,
            "error_category": self.error_category,
            "error_detail": self.error_detail,
            "resolved_path": self.resolved_path,
            "resolved_name": self.resolved_name,
            "duration_ms": self.duration_ms,
            "retry_count": self.retry_count,
        }


class DiscoveredFileRecord(Base):
    """
    A remote file observed by a check.

    The composite identity (tenant, configuration, url, discovery date) is
    unique; a second observation on the same date inserts nothing.
    """

    __tablename__ = "discovered_files"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "configuration_id",
            "url",
            "discovery_date",
            name="uq_discovered_files_identity",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    configuration_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    discovery_date: Mapped[date] = mapped_column(Date, nullable=False)

    size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    last_modified_remote: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    execution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    notification_status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "configuration_id": self.configuration_id,
            "url": self.url,
            "discovery_date": self.discovery_date.isoformat(),
            "size": self.size,
            "last_modified_remote": (
                self.last_modified_remote.isoformat() if self.last_modified_remote else None
            ),
            "discovered_at": self.discovered_at.isoformat(),
            "execution_id": self.execution_id,
            "notification_status": self.notification_status,
        }


class LeaseRecord(Base):
    """Time-bound lock record; a lease past ``expires_at`` may be taken over."""

    __tablename__ = "leases"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)


# Additional indexes for common queries
Index("ix_executions_scheduled_for", ExecutionRecord.scheduled_for.desc())
Index("ix_configurations_active", ConfigurationRecord.is_active, ConfigurationRecord.next_due_at)
