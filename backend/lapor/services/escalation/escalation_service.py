"""
Escalation Service

AUTHORITY: SYSTEM
Escalates overdue reports and produces the read-only escalation snapshots.

Per report, one compare-and-set UPDATE moves the level up by one, forces
ESCALATED, sets a fresh deadline and stamps last_escalated_at. The UPDATE
only matches while the report still has the status and level that were read
and is still overdue, so a report is escalated at most once per level even
when two sweeps overlap.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ...config import MAX_ESCALATION_LEVEL
from ...errors import DependencyUnavailable
from ...models.db_models import (
    FINAL_STATUSES, DepartmentDB, ReportDB, ReportStatus, StatusHistoryDB, utcnow,
)
from ...models.events import EventType
from ..events.publisher import EventPublisher, report_payload
from .deadline_engine import DeadlineEngine

logger = logging.getLogger(__name__)

ESCALATION_REASON = "SLA deadline exceeded"
CRITICAL_LEVEL = 2
CRITICAL_LIST_LIMIT = 10


class EscalationService:
    """
    SLA-driven escalation.

    AUTHORITY: SYSTEM - Runs from the scheduler, no user confirmation.
    """

    def __init__(
        self,
        db_session: Session,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
        max_level: int = MAX_ESCALATION_LEVEL,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.publisher = publisher
        self.clock = clock
        self.max_level = max_level
        self.deadlines = DeadlineEngine(db_session, clock=clock, max_level=max_level)

    # =========================================================================
    # SWEEP
    # =========================================================================

    def run_sweep(self) -> Dict[str, Any]:
        """
        Escalate every overdue report once.

        Each report commits on its own. A failure is rolled back, logged and
        counted, and the sweep moves on; the report is retried next sweep.
        """
        now = self.clock()
        escalated = []
        skipped = []
        errors = []

        overdue = self.deadlines.get_overdue_reports(now)
        candidates = [(r.id, r.reference_number) for r in overdue]

        for report, (report_id, reference) in zip(overdue, candidates):
            try:
                result = self.escalate_report(report, now)
                if result is None:
                    skipped.append(reference)
                else:
                    escalated.append(result)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Escalation failed for {reference}: {e}")
                errors.append({
                    "report_id": report_id,
                    "reference_number": reference,
                    "error": str(e),
                })

        if candidates:
            logger.info(
                f"Escalation sweep: {len(candidates)} overdue, {len(escalated)} escalated, "
                f"{len(skipped)} skipped, {len(errors)} failed"
            )

        return {
            "run_date": now.isoformat(),
            "reports_found": len(candidates),
            "reports_escalated": len(escalated),
            "reports_skipped": len(skipped),
            "errors": len(errors),
            "details": {
                "escalated": escalated,
                "skipped": skipped,
                "errors": errors,
            },
        }

    def escalate_report(self, report: ReportDB, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Escalate one report and publish its events after commit.

        Returns None when the report no longer qualifies at write time
        (already escalated at this level, resolved or rejected meanwhile,
        deadline moved, or at the cap).
        """
        now = now or self.clock()
        old_status = report.status
        old_level = report.escalation_level

        if old_status in FINAL_STATUSES or old_level >= self.max_level:
            return None

        new_level = old_level + 1
        new_deadline = self.deadlines.escalated_deadline(new_level, now)

        result = self.db.execute(
            update(ReportDB)
            .where(
                ReportDB.id == report.id,
                ReportDB.status == old_status,
                ReportDB.status.notin_(FINAL_STATUSES),
                ReportDB.escalation_level == old_level,
                ReportDB.sla_deadline < now,
            )
            .values(
                status=ReportStatus.ESCALATED,
                escalation_level=new_level,
                sla_deadline=new_deadline,
                last_escalated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.info(f"Skipped escalation of {report.reference_number}: changed since read")
            return None

        self.db.add(StatusHistoryDB(
            report_id=report.id,
            old_status=old_status,
            new_status=ReportStatus.ESCALATED,
            notes=f"{ESCALATION_REASON}. Escalation level {old_level} -> {new_level}",
            changed_by=None,
            created_at=now,
        ))

        try:
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            raise DependencyUnavailable(
                "Report store unavailable during escalation",
                {"reportId": report.id},
            ) from e

        logger.info(
            f"Escalated {report.reference_number}: level {old_level} -> {new_level}, "
            f"deadline {new_deadline.isoformat()}"
        )

        self._publish(report, old_status, old_level, new_level, new_deadline)

        return {
            "report_id": report.id,
            "reference_number": report.reference_number,
            "previous_level": old_level,
            "new_level": new_level,
            "previous_status": old_status.value,
            "sla_deadline": new_deadline.isoformat(),
        }

    def _publish(
        self,
        report: ReportDB,
        old_status: ReportStatus,
        old_level: int,
        new_level: int,
        new_deadline: datetime,
    ) -> None:
        if self.publisher is None:
            return

        # Committed state is re-read on attribute access
        self.publisher.publish(EventType.REPORT_ESCALATED, report_payload(
            report,
            previousLevel=old_level,
            newLevel=new_level,
            previousStatus=old_status.value,
            reason=ESCALATION_REASON,
            slaDeadline=new_deadline.isoformat(),
            departmentId=report.department_id,
            assignedToId=report.assigned_to_id,
            reporterId=report.reporter_id,
        ))

        if old_status != ReportStatus.ESCALATED:
            self.publisher.publish(EventType.REPORT_STATUS_CHANGED, report_payload(
                report,
                oldStatus=old_status.value,
                newStatus=ReportStatus.ESCALATED.value,
                changedBy=None,
                notes=ESCALATION_REASON,
                reporterId=report.reporter_id,
                assignedToId=report.assigned_to_id,
            ))

    # =========================================================================
    # SNAPSHOTS (READ-ONLY)
    # =========================================================================

    def _active(self):
        return self.db.query(ReportDB).filter(ReportDB.status.notin_(FINAL_STATUSES))

    def _pending_escalation_count(self, now: datetime) -> int:
        return self._active().filter(
            ReportDB.sla_deadline >= now,
            ReportDB.sla_deadline <= now + timedelta(hours=1),
            ReportDB.escalation_level < self.max_level,
        ).count()

    def get_stats(self) -> Dict[str, Any]:
        """Pending escalation within the hour, escalated today, active reports per level."""
        now = self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        escalated_today = self.db.query(ReportDB).filter(
            ReportDB.last_escalated_at >= start_of_day,
        ).count()

        by_level = {
            level: count
            for level, count in self.db.query(ReportDB.escalation_level, func.count(ReportDB.id))
            .filter(ReportDB.status.notin_(FINAL_STATUSES))
            .group_by(ReportDB.escalation_level)
            .all()
        }

        return {
            "generated_at": now.isoformat(),
            "pending_escalation": self._pending_escalation_count(now),
            "escalated_today": escalated_today,
            "by_level": {str(level): by_level.get(level, 0) for level in range(1, self.max_level + 1)},
            "sla": self.deadlines.describe(),
        }

    def hourly_report(self) -> Dict[str, Any]:
        """Point-in-time operational snapshot. Changes nothing."""
        now = self.clock()

        active = self._active().count()
        escalated_last_hour = self.db.query(ReportDB).filter(
            ReportDB.last_escalated_at >= now - timedelta(hours=1),
        ).count()

        critical_query = self._active().filter(
            ReportDB.escalation_level >= CRITICAL_LEVEL,
            ReportDB.sla_deadline < now,
        )
        critical_total = critical_query.count()
        critical = [
            {
                "reference_number": r.reference_number,
                "title": r.title,
                "escalation_level": r.escalation_level,
                "hours_overdue": self.deadlines.hours_overdue(r, now),
            }
            for r in critical_query.order_by(
                ReportDB.escalation_level.desc(), ReportDB.sla_deadline.asc()
            ).limit(CRITICAL_LIST_LIMIT).all()
        ]

        report = {
            "generated_at": now.isoformat(),
            "active_reports": active,
            "pending_escalation": self._pending_escalation_count(now),
            "escalated_last_hour": escalated_last_hour,
            "critical_reports": critical_total,
            "critical": critical,
            "departments": self._department_breakdown(),
        }

        logger.info(
            f"Hourly escalation report: active={active} "
            f"escalated_last_hour={escalated_last_hour} critical={critical_total}"
        )
        return report

    def _department_breakdown(self) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(
                DepartmentDB.code,
                DepartmentDB.name,
                ReportDB.status,
                ReportDB.escalation_level,
            )
            .join(ReportDB, ReportDB.department_id == DepartmentDB.id)
            .filter(ReportDB.status.notin_(FINAL_STATUSES))
            .all()
        )

        breakdown: Dict[str, Dict[str, Any]] = {}
        for code, name, status, level in rows:
            entry = breakdown.setdefault(code, {
                "department_code": code,
                "department_name": name,
                "active": 0,
                "escalated": 0,
                "_level_total": 0,
            })
            entry["active"] += 1
            entry["_level_total"] += level
            if status == ReportStatus.ESCALATED:
                entry["escalated"] += 1

        result = []
        for entry in breakdown.values():
            level_total = entry.pop("_level_total")
            entry["avg_escalation_level"] = round(level_total / entry["active"], 2)
            result.append(entry)

        return sorted(result, key=lambda e: (-e["escalated"], e["department_code"]))
