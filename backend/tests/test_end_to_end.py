"""
End-to-end lifecycle on the in-memory broker.

PUBLIC report -> routed to INFRASTRUKTUR at priority 2 -> IN_PROGRESS ->
deadline passes -> one sweep -> ESCALATED at level 2 with a new deadline
and a report.escalated event.
"""
from datetime import timedelta

from lapor.models.db_models import NotificationType, NotificationDB, ReportStatus
from lapor.models.events import EventType
from lapor.services.reports.report_service import ReportService


class TestReportLifecycle:

    def test_route_work_and_escalate(self, components, db, broker, clock):
        service = ReportService(
            db, publisher=components.report_publisher, vault=components.vault, clock=clock,
        )

        # 1. Intake
        result = service.submit_report(
            title="jalan rusak parah di depan sekolah",
            description="Lubang besar, sudah ada motor yang jatuh",
            category="INFRASTRUCTURE",
            visibility="PUBLIC",
            reporter_id="citizen-1",
        )
        report = service.get_report(result["id"])

        # 2. Routing happened on report.created
        assert report.department.code == "INFRASTRUKTUR"
        assert report.priority == 2
        assert report.status == ReportStatus.PENDING
        routed = broker.events_of(EventType.ROUTING_COMPLETED)
        assert len(routed) == 1
        assert routed[0].payload["referenceNumber"] == result["referenceNumber"]

        # 3. Staff picks it up
        clock.advance(hours=2)
        service.transition_status(report.id, ReportStatus.IN_PROGRESS, actor_id="staff-1")
        deadline = service.get_report(report.id).sla_deadline
        assert deadline > clock.now

        # 4. Nobody touches it until the deadline passes
        clock.now = deadline + timedelta(minutes=1)
        summary = components.scheduler.run_sweep()

        assert summary["reports_escalated"] == 1
        escalated = service.get_report(report.id)
        assert escalated.status == ReportStatus.ESCALATED
        assert escalated.escalation_level == 2
        assert escalated.sla_deadline == clock.now + timedelta(hours=168)

        events = broker.events_of(EventType.REPORT_ESCALATED)
        assert len(events) == 1
        assert events[0].payload["previousLevel"] == 1
        assert events[0].payload["newLevel"] == 2
        assert events[0].payload["reportId"] == report.id

        # Event order for this report
        assert [e.type for e in broker.published] == [
            EventType.REPORT_CREATED,
            EventType.ROUTING_COMPLETED,
            EventType.REPORT_STATUS_CHANGED,
            EventType.REPORT_ESCALATED,
            EventType.REPORT_STATUS_CHANGED,
        ]

        # History ledger
        history = service.get_history(report.id)
        assert [(h.old_status.value, h.new_status.value) for h in history] == [
            ("PENDING", "PENDING"),
            ("PENDING", "IN_PROGRESS"),
            ("IN_PROGRESS", "ESCALATED"),
        ]

        # Public tracking reflects all of it
        view = service.track_by_reference(result["referenceNumber"])
        assert view["status"] == "ESCALATED"
        assert view["escalationLevel"] == 2
        assert view["department"] == {"code": "INFRASTRUKTUR", "name": "Dinas Infrastruktur"}

        # Reporter heard about routing, the status change and the escalation
        types = {
            n.type for n in db.query(NotificationDB).filter(
                NotificationDB.recipient_id == "citizen-1"
            ).all()
        }
        assert types == {
            NotificationType.REPORT_ROUTED,
            NotificationType.STATUS_UPDATED,
            NotificationType.REPORT_ESCALATED,
        }

        # Nothing was dead-lettered along the way
        assert broker.dead_letters == []
