"""
Deadline Engine

AUTHORITY: SYSTEM
Calculates SLA deadlines and finds reports that have overrun them.

Key behaviors:
- Initial deadline at creation from the creation priority
- New deadline on every escalation from the new level
- Overdue scan: past deadline, non-terminal, below the level cap

Automatic processes only ever move a deadline later.
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ...config import MAX_ESCALATION_LEVEL, SLA_LEVEL1_HOURS, SLA_LEVEL2_HOURS
from ...models.db_models import FINAL_STATUSES, ReportDB, utcnow


# =============================================================================
# SLA CONFIGURATION
# =============================================================================

SLA_CONFIG = {
    1: {
        "hours": SLA_LEVEL1_HOURS,
        "description": "Department response window",
    },
    2: {
        "hours": SLA_LEVEL2_HOURS,
        "description": "Escalated response window (applies to every level from 2 up)",
    },
}

# Creation priorities at or below this get the level-1 window
URGENT_PRIORITY_THRESHOLD = 2


# =============================================================================
# DEADLINE ENGINE
# =============================================================================

class DeadlineEngine:
    """
    SLA deadline arithmetic and overdue queries.

    AUTHORITY: SYSTEM - No user can extend or shorten a deadline.
    """

    def __init__(
        self,
        db_session: Optional[Session] = None,
        clock: Callable[[], datetime] = utcnow,
        max_level: int = MAX_ESCALATION_LEVEL,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.clock = clock
        self.max_level = max_level

    @staticmethod
    def sla_hours(level: int) -> int:
        """Hours allowed at an escalation level."""
        if level <= 1:
            return SLA_CONFIG[1]["hours"]
        return SLA_CONFIG[2]["hours"]

    def initial_deadline(self, priority: int, created_at: Optional[datetime] = None) -> datetime:
        """
        Deadline for a new report.

        Urgent reports (priority 1-2) get the level-1 window, everything else
        the longer level-2 window.
        """
        start = created_at or self.clock()
        if priority <= URGENT_PRIORITY_THRESHOLD:
            return start + timedelta(hours=SLA_LEVEL1_HOURS)
        return start + timedelta(hours=SLA_LEVEL2_HOURS)

    def escalated_deadline(self, new_level: int, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) + timedelta(hours=self.sla_hours(new_level))

    def rerouted_deadline(self, report: ReportDB, new_priority: int) -> datetime:
        """Deadline after routing sets a priority. Never earlier than the current one."""
        proposed = self.initial_deadline(new_priority, report.created_at)
        if report.sla_deadline is not None and report.sla_deadline > proposed:
            return report.sla_deadline
        return proposed

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _active(self):
        return self.db.query(ReportDB).filter(ReportDB.status.notin_(FINAL_STATUSES))

    def get_overdue_reports(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[ReportDB]:
        """Reports eligible for escalation at `now`, oldest deadline first."""
        now = now or self.clock()
        query = self._active().filter(
            ReportDB.sla_deadline < now,
            ReportDB.escalation_level < self.max_level,
        ).order_by(ReportDB.sla_deadline.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def hours_overdue(self, report: ReportDB, now: Optional[datetime] = None) -> float:
        delta = (now or self.clock()) - report.sla_deadline
        return round(max(delta.total_seconds(), 0) / 3600, 1)

    def describe(self) -> Dict[str, object]:
        return {
            "levels": {level: dict(cfg) for level, cfg in SLA_CONFIG.items()},
            "maxEscalationLevel": self.max_level,
            "urgentPriorityThreshold": URGENT_PRIORITY_THRESHOLD,
        }
