"""
Lapor Core - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Boolean,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class ReportStatus(str, Enum):
    """States in the report lifecycle."""
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    IN_REVIEW = "IN_REVIEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_FEEDBACK = "WAITING_FEEDBACK"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


# Not eligible for automatic escalation
FINAL_STATUSES = (ReportStatus.RESOLVED, ReportStatus.REJECTED, ReportStatus.CLOSED)


class ReportVisibility(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    ANONYMOUS = "ANONYMOUS"


class ReportCategory(str, Enum):
    INFRASTRUCTURE = "INFRASTRUCTURE"
    CLEANLINESS = "CLEANLINESS"
    SECURITY = "SECURITY"
    SOCIAL = "SOCIAL"
    HEALTH = "HEALTH"
    EDUCATION = "EDUCATION"
    TRANSPORTATION = "TRANSPORTATION"
    PERMITS = "PERMITS"
    ENVIRONMENT = "ENVIRONMENT"
    OTHER = "OTHER"


class NotificationType(str, Enum):
    REPORT_CREATED = "REPORT_CREATED"
    STATUS_UPDATED = "STATUS_UPDATED"
    REPORT_ASSIGNED = "REPORT_ASSIGNED"
    REPORT_ESCALATED = "REPORT_ESCALATED"
    REPORT_ROUTED = "REPORT_ROUTED"


# =============================================================================
# ORGANIZATION
# =============================================================================

class DepartmentDB(Base):
    """Organizational unit a report is routed to."""
    __tablename__ = "departments"

    id = Column(String(36), primary_key=True)  # UUID
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    reports = relationship("ReportDB", back_populates="department")


# =============================================================================
# REPORTS
# =============================================================================

class ReportDB(Base):
    """
    One citizen complaint.

    reference_number is assigned once at creation from ReferenceSequenceDB.
    status, escalation_level and sla_deadline only change through the
    state machine and the escalation sweep.
    """
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True)  # UUID
    reference_number = Column(String(32), unique=True, nullable=False, index=True)

    # Content
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(SQLEnum(ReportCategory), nullable=False)
    visibility = Column(SQLEnum(ReportVisibility), nullable=False, default=ReportVisibility.PUBLIC)

    # Workflow
    status = Column(SQLEnum(ReportStatus), nullable=False, default=ReportStatus.PENDING, index=True)
    priority = Column(Integer, nullable=False, default=3)  # 1 = most urgent
    escalation_level = Column(Integer, nullable=False, default=1)
    sla_deadline = Column(DateTime, nullable=False, index=True)
    last_escalated_at = Column(DateTime, nullable=True)

    # Assignment
    department_id = Column(String(36), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_to_id = Column(String(36), nullable=True, index=True)

    # Engagement (monotonic)
    upvote_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)

    # Ownership - NULL for ANONYMOUS reports
    reporter_id = Column(String(36), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    # Relationships
    department = relationship("DepartmentDB", back_populates="reports")
    status_history = relationship(
        "StatusHistoryDB",
        back_populates="report",
        order_by="StatusHistoryDB.id",
    )
    anonymous_identity = relationship("AnonymousIdentityDB", back_populates="report", uselist=False)

    __table_args__ = (
        Index("ix_reports_sweep", "status", "sla_deadline", "escalation_level"),
    )


class StatusHistoryDB(Base):
    """
    Append-only status ledger.

    One row per transition, including the synthetic PENDING -> PENDING row
    written at creation. Rows are never updated or deleted.
    """
    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)  # Append order
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)

    old_status = Column(SQLEnum(ReportStatus), nullable=False)
    new_status = Column(SQLEnum(ReportStatus), nullable=False)
    notes = Column(Text, nullable=True)
    changed_by = Column(String(36), nullable=True)  # NULL for system transitions

    created_at = Column(DateTime, default=utcnow)

    report = relationship("ReportDB", back_populates="status_history")


class AnonymousIdentityDB(Base):
    """Encrypted submitter of an ANONYMOUS report. Written once, never updated."""
    __tablename__ = "anonymous_identities"

    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), primary_key=True)
    encrypted_reporter_id = Column(Text, nullable=False)
    key_id = Column(String(64), nullable=False)  # Per-record derivation salt
    tracking_token_hash = Column(String(255), nullable=False)  # bcrypt

    created_at = Column(DateTime, default=utcnow)

    report = relationship("ReportDB", back_populates="anonymous_identity")


class ReferenceSequenceDB(Base):
    """Per-year reference number counter. Only ever mutated by an atomic upsert."""
    __tablename__ = "reference_sequences"

    year = Column(Integer, primary_key=True)
    counter = Column(Integer, nullable=False, default=0)


class ReportUpvoteDB(Base):
    """One upvote per (report, user)."""
    __tablename__ = "report_upvotes"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("report_id", "user_id", name="uq_report_upvote"),
    )


# =============================================================================
# EVENT CONSUMPTION
# =============================================================================

class ProcessedEventDB(Base):
    """
    De-duplication ledger for idempotent consumers.

    A row means the consumer finished the side effect for that event.
    """
    __tablename__ = "processed_events"

    event_id = Column(String(36), primary_key=True)
    consumer = Column(String(100), primary_key=True)
    event_type = Column(String(50), nullable=False)
    processed_at = Column(DateTime, default=utcnow)


class NotificationDB(Base):
    """In-app notification. Unique per (event, recipient) so redelivery is harmless."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)  # UUID
    event_id = Column(String(36), nullable=False)
    recipient_id = Column(String(36), nullable=False, index=True)
    report_id = Column(String(36), nullable=False, index=True)

    type = Column(SQLEnum(NotificationType), nullable=False)
    channels = Column(JSON, nullable=False, default=list)  # ["in_app", "email"]
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("event_id", "recipient_id", name="uq_notification_event_recipient"),
    )
