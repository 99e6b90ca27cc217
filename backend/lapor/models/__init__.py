"""Lapor Core - Data Models"""
from .db_models import (
    # Enums
    ReportStatus, ReportVisibility, ReportCategory, NotificationType,
    FINAL_STATUSES,
    # Tables
    DepartmentDB, ReportDB, StatusHistoryDB, AnonymousIdentityDB,
    ReferenceSequenceDB, ReportUpvoteDB, ProcessedEventDB, NotificationDB,
    utcnow,
)
from .events import EventType, DomainEvent

__all__ = [
    "ReportStatus", "ReportVisibility", "ReportCategory", "NotificationType",
    "FINAL_STATUSES",
    "DepartmentDB", "ReportDB", "StatusHistoryDB", "AnonymousIdentityDB",
    "ReferenceSequenceDB", "ReportUpvoteDB", "ProcessedEventDB", "NotificationDB",
    "utcnow",
    "EventType", "DomainEvent",
]
