"""
Report State Machine

Deterministic lifecycle for citizen reports.
Every accepted transition writes its status-history row in the same unit of
work as the status change. Events are the caller's job, after commit.
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple, Callable

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from ...errors import Conflict, InvalidTransition
from ...models.db_models import ReportStatus, ReportDB, StatusHistoryDB, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# RECEIVED is reachable only from operator tooling outside the core; nothing
# in the table leads into it. IN_REVIEW is entered only from RECEIVED.
# ESCALATED is entered by the
# escalation sweep as well as by a manual IN_PROGRESS -> ESCALATED move.
#
# =============================================================================

STATE_CONFIG = {
    ReportStatus.PENDING: {
        "description": "Submitted, waiting for a department to pick it up",
        "allowed_transitions": [ReportStatus.IN_PROGRESS, ReportStatus.REJECTED],
    },
    ReportStatus.RECEIVED: {
        "description": "Acknowledged by the department",
        "allowed_transitions": [ReportStatus.IN_REVIEW, ReportStatus.REJECTED],
    },
    ReportStatus.IN_REVIEW: {
        "description": "Under review",
        "allowed_transitions": [ReportStatus.ASSIGNED, ReportStatus.REJECTED],
    },
    ReportStatus.ASSIGNED: {
        "description": "Assigned to a staff member",
        "allowed_transitions": [ReportStatus.IN_PROGRESS],
    },
    ReportStatus.IN_PROGRESS: {
        "description": "Being handled",
        "allowed_transitions": [
            ReportStatus.RESOLVED,
            ReportStatus.ESCALATED,
            ReportStatus.WAITING_FEEDBACK,
        ],
    },
    ReportStatus.WAITING_FEEDBACK: {
        "description": "Waiting on the reporter",
        "allowed_transitions": [ReportStatus.IN_PROGRESS, ReportStatus.RESOLVED],
    },
    ReportStatus.ESCALATED: {
        "description": "Overran its SLA deadline or raised manually",
        "allowed_transitions": [ReportStatus.IN_PROGRESS, ReportStatus.RESOLVED],
    },
    ReportStatus.RESOLVED: {
        "description": "Handled, waiting to be closed",
        "allowed_transitions": [ReportStatus.CLOSED],
    },
    ReportStatus.CLOSED: {
        "description": "Closed",
        "allowed_transitions": [],  # Terminal state
    },
    ReportStatus.REJECTED: {
        "description": "Rejected as invalid or out of scope",
        "allowed_transitions": [],  # Terminal state
    },
}


# =============================================================================
# STATE MACHINE
# =============================================================================

class ReportStateMachine:
    """
    Validates and applies report status transitions.

    The status write is a compare-and-set on the status the caller read, so
    two concurrent writers cannot both move the same report out of the same
    state. The caller owns the commit.
    """

    def __init__(self, db_session, clock: Callable[[], datetime] = utcnow):
        """Initialize with database session."""
        self.db = db_session
        self.clock = clock

    def get_state_config(self, status: ReportStatus) -> Dict[str, Any]:
        """Get configuration for a state."""
        return STATE_CONFIG.get(status, {})

    def get_next_states(self, status: ReportStatus) -> List[ReportStatus]:
        """Get possible next states from current state."""
        return self.get_state_config(status).get("allowed_transitions", [])

    def is_terminal_state(self, status: ReportStatus) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return len(self.get_next_states(status)) == 0

    def can_transition(
        self,
        from_status: ReportStatus,
        to_status: ReportStatus
    ) -> Tuple[bool, str]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        if to_status in self.get_next_states(from_status):
            return True, "Transition allowed"

        return False, f"Cannot transition from {from_status.value} to {to_status.value}"

    def transition(
        self,
        report: ReportDB,
        to_status: ReportStatus,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        extra_values: Optional[Dict[str, Any]] = None,
    ) -> StatusHistoryDB:
        """
        Apply a transition and stage its history entry.

        Raises InvalidTransition when the table forbids the move and Conflict
        when another writer changed the status first. Nothing is staged in
        either case.
        """
        from_status = report.status

        allowed, reason = self.can_transition(from_status, to_status)
        if not allowed:
            logger.info(f"Rejected transition for {report.reference_number}: {reason}")
            raise InvalidTransition(
                from_status.value,
                to_status.value,
                [s.value for s in self.get_next_states(from_status)],
            )

        now = self.clock()
        values = {"status": to_status, "updated_at": now}
        if to_status == ReportStatus.RESOLVED:
            values["resolved_at"] = now
        if extra_values:
            values.update(extra_values)

        result = self.db.execute(
            update(ReportDB)
            .where(ReportDB.id == report.id, ReportDB.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict(
                f"Report {report.reference_number} was modified concurrently",
                {"reportId": report.id, "expectedStatus": from_status.value},
            )

        # Keep the in-session object in step with the row without dirtying it
        for key, value in values.items():
            set_committed_value(report, key, value)

        entry = StatusHistoryDB(
            report_id=report.id,
            old_status=from_status,
            new_status=to_status,
            notes=notes,
            changed_by=actor_id,
            created_at=now,
        )
        self.db.add(entry)

        logger.info(
            f"Report {report.reference_number}: {from_status.value} -> {to_status.value}"
            f" (actor={actor_id or 'system'})"
        )
        return entry
