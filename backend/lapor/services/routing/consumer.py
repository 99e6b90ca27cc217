"""
Routing Consumer

Listens for report.created, classifies the report and writes the department
and priority back through the Report Store. Publishes routing.completed
once the write-back has committed.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models.events import DomainEvent, EventType
from ..events.consumer import FollowUp, IdempotentConsumer
from ..events.publisher import report_payload
from ..reports.report_service import ReportService
from .engine import RoutingEngine

logger = logging.getLogger(__name__)


class RoutingConsumer(IdempotentConsumer):
    name = "routing"
    event_types = (EventType.REPORT_CREATED,)

    def __init__(self, session_factory, publisher=None, engine: Optional[RoutingEngine] = None, **kwargs):
        super().__init__(session_factory, publisher, **kwargs)
        self.engine = engine or RoutingEngine()

    def process(self, db: Session, event: DomainEvent) -> List[FollowUp]:
        service = ReportService(db, clock=self.clock)
        report = service.get_report(event.report_id)

        decision = self.engine.route(report.title, report.description, report.category)
        department, fell_back = service.resolve_department(decision.department_code)
        reason = decision.reason
        if fell_back:
            reason = f"Fallback to default department ({reason})"

        changed = service.apply_routing(report, department, decision.priority)

        logger.info(
            f"Routed {report.reference_number} to {department.code} "
            f"priority {decision.priority}: {reason}"
        )
        if not changed:
            return []

        return [(EventType.ROUTING_COMPLETED, report_payload(
            report,
            departmentId=department.id,
            departmentCode=department.code,
            departmentName=department.name,
            priority=decision.priority,
            reason=reason,
            reporterId=report.reporter_id,
        ))]
