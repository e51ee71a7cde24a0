"""
Compliance Infrastructure Models
================================

SQLAlchemy ORM models for the compliance module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from bgcheck_compliance.infrastructure.database import Base


class StatusChangeModel(Base):
    """
    Database model for StatusChangeRecord.

    Maps to the 'status_changes' table. Rows are inserted, never updated.
    """
    __tablename__ = "status_changes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    changed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    candidate_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    candidate_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    extra: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("entity_id", "timestamp", name="uq_status_changes_entity_timestamp"),
    )


class EscalationEventModel(Base):
    """
    Database model for EscalationEvent.

    Maps to the 'escalation_events' table. The partial unique index allows
    one non-superseded event per (entity, rule, occupancy).
    """
    __tablename__ = "escalation_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rule_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    rule_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    occupancy_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    days_pending: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_to: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    candidate_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    superseded_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_escalation_events_active_occupancy",
            "entity_id",
            "rule_id",
            "occupancy_started_at",
            unique=True,
            postgresql_where=text("NOT superseded"),
            sqlite_where=text("NOT superseded"),
        ),
    )


class SLAAlertModel(Base):
    """
    Database model for SLAAlert.

    Maps to the 'sla_alerts' table.
    """
    __tablename__ = "sla_alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    occupancy_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    percent_complete: Mapped[float] = mapped_column(Float, nullable=False)
    days_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recipients: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    notification_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("entity_id", "occupancy_started_at", "level", name="uq_sla_alerts_occupancy_level"),
    )
