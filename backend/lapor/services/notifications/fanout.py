"""
Notification Fan-out

Turns lifecycle events into stored in-app notifications, one per
(event, recipient). Rendering and outbound delivery (email, push) happen
outside the core; the stored channel list tells those senders what to do.

Recipients:
- report.created         -> configured administrators
- report.status_changed  -> reporter
- report.assigned        -> assignee, reporter
- report.escalated       -> reporter, assignee
- routing.completed      -> reporter

Anonymous reports have no reporter id in the core and never notify the
reporter.
"""
import logging
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import NOTIFY_ADMIN_IDS
from ...models.db_models import NotificationDB, NotificationType, ReportDB
from ...models.events import DomainEvent, EventType
from ..events.consumer import IdempotentConsumer

logger = logging.getLogger(__name__)

IN_APP = "in_app"
EMAIL = "email"

EVENT_NOTIFICATION_TYPES = {
    EventType.REPORT_CREATED: NotificationType.REPORT_CREATED,
    EventType.REPORT_STATUS_CHANGED: NotificationType.STATUS_UPDATED,
    EventType.REPORT_ASSIGNED: NotificationType.REPORT_ASSIGNED,
    EventType.REPORT_ESCALATED: NotificationType.REPORT_ESCALATED,
    EventType.ROUTING_COMPLETED: NotificationType.REPORT_ROUTED,
}

EMAIL_TYPES = (
    NotificationType.STATUS_UPDATED,
    NotificationType.REPORT_ASSIGNED,
    NotificationType.REPORT_ESCALATED,
)


def resolve_channels(notification_type: NotificationType) -> List[str]:
    if notification_type in EMAIL_TYPES:
        return [IN_APP, EMAIL]
    return [IN_APP]


def build_message(event: DomainEvent) -> Dict[str, str]:
    payload = event.payload
    reference = payload["referenceNumber"]

    if event.type == EventType.REPORT_CREATED:
        return {"title": "New report", "message": f"New report {reference}: {payload.get('title', '')}"}
    if event.type == EventType.REPORT_STATUS_CHANGED:
        return {
            "title": "Report status updated",
            "message": f"Report {reference} is now {payload.get('newStatus')}",
        }
    if event.type == EventType.REPORT_ASSIGNED:
        return {"title": "Report assigned", "message": f"Report {reference} has been assigned"}
    if event.type == EventType.REPORT_ESCALATED:
        return {
            "title": "Report escalated",
            "message": (
                f"Report {reference} escalated from level {payload.get('previousLevel')} "
                f"to {payload.get('newLevel')}"
            ),
        }
    return {
        "title": "Report routed",
        "message": f"Report {reference} was routed to {payload.get('departmentName')}",
    }


class NotificationFanout(IdempotentConsumer):
    name = "notifications"
    event_types = tuple(EVENT_NOTIFICATION_TYPES)

    def __init__(self, session_factory, publisher=None, admin_ids: Optional[List[str]] = None, **kwargs):
        super().__init__(session_factory, publisher, **kwargs)
        self.admin_ids = list(NOTIFY_ADMIN_IDS if admin_ids is None else admin_ids)

    def resolve_recipients(self, db: Session, event: DomainEvent) -> List[str]:
        if event.type == EventType.REPORT_CREATED:
            candidates = list(self.admin_ids)
        else:
            report = db.get(ReportDB, event.report_id)
            reporter_id = report.reporter_id if report else event.payload.get("reporterId")
            assignee_id = event.payload.get("assignedToId") or (report.assigned_to_id if report else None)

            if event.type == EventType.REPORT_ASSIGNED:
                candidates = [assignee_id, reporter_id]
            elif event.type == EventType.REPORT_ESCALATED:
                candidates = [reporter_id, assignee_id]
            else:
                candidates = [reporter_id]

        recipients = []
        for recipient in candidates:
            if recipient and recipient not in recipients:
                recipients.append(recipient)
        return recipients

    def process(self, db: Session, event: DomainEvent):
        notification_type = EVENT_NOTIFICATION_TYPES[event.type]
        channels = resolve_channels(notification_type)
        content = build_message(event)

        created = 0
        for recipient_id in self.resolve_recipients(db, event):
            exists = db.query(NotificationDB).filter(
                NotificationDB.event_id == event.event_id,
                NotificationDB.recipient_id == recipient_id,
            ).first()
            if exists is not None:
                continue
            db.add(NotificationDB(
                id=str(uuid4()),
                event_id=event.event_id,
                recipient_id=recipient_id,
                report_id=event.report_id,
                type=notification_type,
                channels=channels,
                data={**content, "referenceNumber": event.payload["referenceNumber"]},
                is_read=False,
                created_at=self.clock(),
            ))
            created += 1

        if created:
            logger.info(f"{created} notification(s) for {event.type.value} {event.payload['referenceNumber']}")
        return []
