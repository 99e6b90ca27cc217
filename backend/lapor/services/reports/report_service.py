"""
Report Service

The Report Store: intake, status transitions, tracking, engagement.

Write path for every operation:
1. validate input
2. stage the row change (+ paired history entry) in one session
3. commit
4. publish the lifecycle event(s)

Events are never published for work that did not commit.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ...config import ROUTING_DEFAULT_DEPARTMENT, ROUTING_DEFAULT_PRIORITY
from ...errors import (
    Conflict, DependencyUnavailable, InvalidTrackingToken, InvalidTransition, NotFound,
    ValidationError,
)
from ...models.db_models import (
    AnonymousIdentityDB, DepartmentDB, ReportCategory, ReportDB, ReportStatus,
    ReportUpvoteDB, ReportVisibility, StatusHistoryDB, utcnow,
)
from ...models.events import EventType
from ..escalation.deadline_engine import DeadlineEngine
from ..events.publisher import EventPublisher, report_payload
from .identity_vault import IdentityVault
from .reference_numbers import ReferenceNumberAllocator
from .state_machine import ReportStateMachine

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 5000


def _enum_value(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(field, f"must be one of {allowed}") from None


def _require_text(value: Optional[str], field: str, max_length: int) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, "is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return value


class ReportService:
    """
    Report lifecycle operations.

    One instance per unit of work; the session is owned by the caller.
    """

    def __init__(
        self,
        db_session: Session,
        publisher: Optional[EventPublisher] = None,
        vault: Optional[IdentityVault] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.publisher = publisher
        self.vault = vault or IdentityVault()
        self.clock = clock
        self.state_machine = ReportStateMachine(db_session, clock=clock)
        self.deadlines = DeadlineEngine(db_session, clock=clock)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _commit(self) -> None:
        try:
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.error(f"Report store commit failed: {e}")
            raise DependencyUnavailable("Report store unavailable") from e

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self.publisher is not None:
            self.publisher.publish(event_type, payload)

    def get_report(self, report_id: str) -> ReportDB:
        report = self.db.get(ReportDB, report_id, populate_existing=True)
        if report is None:
            raise NotFound("Report", {"reportId": report_id})
        return report

    def get_by_reference(self, reference_number: str) -> Optional[ReportDB]:
        return self.db.query(ReportDB).filter(
            ReportDB.reference_number == reference_number
        ).first()

    # =========================================================================
    # INTAKE
    # =========================================================================

    def submit_report(
        self,
        title: str,
        description: str,
        category,
        visibility=ReportVisibility.PUBLIC,
        reporter_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a report in PENDING.

        Returns {"id", "referenceNumber"} plus "trackingToken" for an
        ANONYMOUS report with a known submitter. The token is not stored in
        clear and cannot be retrieved again.
        """
        title = _require_text(title, "title", TITLE_MAX_LENGTH)
        description = _require_text(description, "description", DESCRIPTION_MAX_LENGTH)
        category = _enum_value(ReportCategory, category, "category")
        visibility = _enum_value(ReportVisibility, visibility, "visibility")
        anonymous = visibility == ReportVisibility.ANONYMOUS
        if not anonymous and not reporter_id:
            raise ValidationError("reporterId", f"is required for {visibility.value} reports")

        # Reserved and committed before the insert; a failed insert burns it
        allocator = ReferenceNumberAllocator(self.db.get_bind(), clock=self.clock)
        reference_number = allocator.allocate()

        now = self.clock()
        priority = ROUTING_DEFAULT_PRIORITY
        report = ReportDB(
            id=str(uuid4()),
            reference_number=reference_number,
            title=title,
            description=description,
            category=category,
            visibility=visibility,
            status=ReportStatus.PENDING,
            priority=priority,
            escalation_level=1,
            sla_deadline=self.deadlines.initial_deadline(priority, now),
            reporter_id=None if anonymous else reporter_id,
            upvote_count=0,
            view_count=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(report)
        self.db.add(StatusHistoryDB(
            report_id=report.id,
            old_status=ReportStatus.PENDING,
            new_status=ReportStatus.PENDING,
            notes="Report submitted",
            changed_by=None if anonymous else reporter_id,
            created_at=now,
        ))

        tracking_token = None
        if anonymous and reporter_id:
            sealed = self.vault.encrypt(reporter_id)
            tracking_token = sealed.tracking_token
            self.db.add(AnonymousIdentityDB(
                report_id=report.id,
                encrypted_reporter_id=sealed.encrypted_reporter_id,
                key_id=sealed.key_id,
                tracking_token_hash=self.vault.hash_token(sealed.tracking_token),
                created_at=now,
            ))

        self._commit()
        logger.info(f"Report {reference_number} created ({visibility.value}, {category.value})")

        self._publish(EventType.REPORT_CREATED, report_payload(
            report,
            title=report.title,
            description=report.description,
            category=report.category.value,
            visibility=report.visibility.value,
            status=report.status.value,
            priority=report.priority,
            reporterId=report.reporter_id,
            createdAt=now.isoformat(),
        ))

        result = {"id": report.id, "referenceNumber": reference_number}
        if tracking_token:
            result["trackingToken"] = tracking_token
        return result

    def update_report(
        self,
        report_id: str,
        actor_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ReportDB:
        """Reporter edits title/description while the report is still PENDING."""
        report = self.get_report(report_id)
        if not actor_id or report.reporter_id != actor_id:
            # Same answer as a missing report
            raise NotFound("Report", {"reportId": report_id})
        if report.status != ReportStatus.PENDING:
            raise Conflict(
                "Report can only be edited while PENDING",
                {"reportId": report_id, "status": report.status.value},
            )

        changes: Dict[str, Dict[str, str]] = {}
        if title is not None:
            title = _require_text(title, "title", TITLE_MAX_LENGTH)
            if title != report.title:
                changes["title"] = {"old": report.title, "new": title}
        if description is not None:
            description = _require_text(description, "description", DESCRIPTION_MAX_LENGTH)
            if description != report.description:
                changes["description"] = {"old": report.description, "new": description}

        if not changes:
            return report

        now = self.clock()
        values = {key: change["new"] for key, change in changes.items()}
        values["updated_at"] = now
        result = self.db.execute(
            update(ReportDB)
            .where(ReportDB.id == report.id, ReportDB.status == ReportStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict("Report left PENDING while being edited", {"reportId": report_id})
        self._commit()

        logger.info(f"Report {report.reference_number} updated: {sorted(changes)}")
        self._publish(EventType.REPORT_UPDATED, report_payload(
            report,
            changes=changes,
            updatedBy=actor_id,
        ))
        return report

    # =========================================================================
    # STATUS
    # =========================================================================

    def transition_status(
        self,
        report_id: str,
        new_status,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReportDB:
        """Manual transition. Raises InvalidTransition with nothing written."""
        new_status = _enum_value(ReportStatus, new_status, "newStatus")
        report = self.get_report(report_id)
        old_status = report.status

        self.state_machine.transition(report, new_status, actor_id=actor_id, notes=notes)
        self._commit()

        self._publish(EventType.REPORT_STATUS_CHANGED, report_payload(
            report,
            oldStatus=old_status.value,
            newStatus=new_status.value,
            changedBy=actor_id,
            notes=notes,
            reporterId=report.reporter_id,
            assignedToId=report.assigned_to_id,
            departmentId=report.department_id,
        ))
        return report

    def assign_report(
        self,
        report_id: str,
        assignee_id: str,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReportDB:
        """
        Assign a staff member.

        From IN_REVIEW this is the IN_REVIEW -> ASSIGNED transition. In any
        other non-terminal status only the assignee changes: no history entry
        and only report.assigned is published. CLOSED and REJECTED reports
        raise InvalidTransition.
        """
        if not assignee_id:
            raise ValidationError("assignedToId", "is required")
        report = self.get_report(report_id)
        old_status = report.status

        if self.state_machine.is_terminal_state(old_status):
            raise InvalidTransition(old_status.value, ReportStatus.ASSIGNED.value, [])

        if old_status != ReportStatus.IN_REVIEW:
            if report.assigned_to_id == assignee_id:
                return report
            now = self.clock()
            result = self.db.execute(
                update(ReportDB)
                .where(ReportDB.id == report.id, ReportDB.status == old_status)
                .values(assigned_to_id=assignee_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise Conflict("Report changed while being assigned", {"reportId": report_id})
            set_committed_value(report, "assigned_to_id", assignee_id)
            set_committed_value(report, "updated_at", now)
            status_changed = False
        else:
            self.state_machine.transition(
                report,
                ReportStatus.ASSIGNED,
                actor_id=actor_id,
                notes=notes or f"Assigned to {assignee_id}",
                extra_values={"assigned_to_id": assignee_id},
            )
            status_changed = True

        self._commit()

        if status_changed:
            self._publish(EventType.REPORT_STATUS_CHANGED, report_payload(
                report,
                oldStatus=old_status.value,
                newStatus=ReportStatus.ASSIGNED.value,
                changedBy=actor_id,
                notes=notes,
                reporterId=report.reporter_id,
                assignedToId=assignee_id,
                departmentId=report.department_id,
            ))
        self._publish(EventType.REPORT_ASSIGNED, report_payload(
            report,
            assignedToId=assignee_id,
            assignedBy=actor_id,
            reporterId=report.reporter_id,
            departmentId=report.department_id,
            status=report.status.value,
        ))
        return report

    # =========================================================================
    # ROUTING WRITE-BACK
    # =========================================================================

    def resolve_department(self, code: str) -> Tuple[DepartmentDB, bool]:
        """Department row for a code, or the default department. Returns (row, fell_back)."""
        department = self.db.query(DepartmentDB).filter(DepartmentDB.code == code).first()
        if department is not None:
            return department, False

        logger.warning(f"Department {code} not found, using default {ROUTING_DEFAULT_DEPARTMENT}")
        department = self.db.query(DepartmentDB).filter(
            DepartmentDB.code == ROUTING_DEFAULT_DEPARTMENT
        ).first()
        if department is None:
            raise NotFound("Department", {"code": code, "default": ROUTING_DEFAULT_DEPARTMENT})
        return department, True

    def apply_routing(self, report: ReportDB, department: DepartmentDB, priority: int) -> bool:
        """
        Stage the department/priority write-back. The caller commits.

        Idempotent: returns False and writes nothing when the report already
        carries this department and priority. Status is left alone and the
        deadline never moves earlier.
        """
        if not 1 <= priority <= 5:
            raise ValidationError("priority", "must be between 1 and 5")
        if report.department_id == department.id and report.priority == priority:
            return False

        report.department_id = department.id
        report.priority = priority
        report.sla_deadline = self.deadlines.rerouted_deadline(report, priority)
        report.updated_at = self.clock()
        return True

    # =========================================================================
    # TRACKING
    # =========================================================================

    def track_by_reference(
        self,
        reference_number: str,
        tracking_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Public status lookup.

        ANONYMOUS reports need the matching tracking token; a wrong or
        missing token fails exactly like an unknown reference number.
        """
        report = self.get_by_reference(reference_number)
        if report is None:
            # No details: must look identical to a token failure
            raise NotFound("Report")

        if report.visibility == ReportVisibility.ANONYMOUS:
            identity = report.anonymous_identity
            if identity is None or not self.vault.verify_token(
                tracking_token, identity.tracking_token_hash
            ):
                logger.info(f"Tracking lookup for {reference_number} refused")
                raise InvalidTrackingToken()

        department = report.department
        return {
            "referenceNumber": report.reference_number,
            "title": report.title,
            "category": report.category.value,
            "status": report.status.value,
            "priority": report.priority,
            "escalationLevel": report.escalation_level,
            "department": (
                {"code": department.code, "name": department.name} if department else None
            ),
            "createdAt": report.created_at.isoformat(),
            "updatedAt": report.updated_at.isoformat() if report.updated_at else None,
            "resolvedAt": report.resolved_at.isoformat() if report.resolved_at else None,
            "history": [
                {
                    "oldStatus": entry.old_status.value,
                    "newStatus": entry.new_status.value,
                    "notes": entry.notes,
                    "createdAt": entry.created_at.isoformat(),
                }
                for entry in self.get_history(report.id)
            ],
        }

    def get_history(self, report_id: str):
        return self.db.query(StatusHistoryDB).filter(
            StatusHistoryDB.report_id == report_id
        ).order_by(StatusHistoryDB.id.asc()).all()

    def reveal_reporter(self, report_id: str) -> str:
        """
        Decrypt the submitter of an ANONYMOUS report.

        Privileged internal use only. Never wired to a public route.
        """
        report = self.get_report(report_id)
        identity = report.anonymous_identity
        if identity is None:
            raise NotFound("Anonymous identity", {"reportId": report_id})
        logger.warning(f"Reporter identity revealed for {report.reference_number}")
        return self.vault.decrypt(identity.encrypted_reporter_id, identity.key_id)

    # =========================================================================
    # ENGAGEMENT
    # =========================================================================

    def upvote(self, report_id: str, user_id: str) -> int:
        """One upvote per user; never on your own report. Returns the new count."""
        if not user_id:
            raise ValidationError("userId", "is required")
        report = self.get_report(report_id)
        if report.reporter_id is not None and report.reporter_id == user_id:
            raise Conflict("Cannot upvote your own report", {"reportId": report_id})

        existing = self.db.query(ReportUpvoteDB).filter(
            ReportUpvoteDB.report_id == report_id,
            ReportUpvoteDB.user_id == user_id,
        ).first()
        if existing is not None:
            raise Conflict("Report already upvoted", {"reportId": report_id})

        self.db.add(ReportUpvoteDB(
            id=str(uuid4()),
            report_id=report_id,
            user_id=user_id,
            created_at=self.clock(),
        ))
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("Report already upvoted", {"reportId": report_id}) from e

        self.db.execute(
            update(ReportDB)
            .where(ReportDB.id == report_id)
            .values(upvote_count=ReportDB.upvote_count + 1)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        self.db.refresh(report)
        return report.upvote_count

    def record_view(self, report_id: str) -> int:
        report = self.get_report(report_id)
        self.db.execute(
            update(ReportDB)
            .where(ReportDB.id == report_id)
            .values(view_count=ReportDB.view_count + 1)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        self.db.refresh(report)
        return report.view_count


def report_to_dict(report: ReportDB) -> Dict[str, Any]:
    """Internal representation (includes reporterId; not for public tracking)."""
    return {
        "id": report.id,
        "referenceNumber": report.reference_number,
        "title": report.title,
        "description": report.description,
        "category": report.category.value,
        "visibility": report.visibility.value,
        "status": report.status.value,
        "priority": report.priority,
        "escalationLevel": report.escalation_level,
        "slaDeadline": report.sla_deadline.isoformat(),
        "lastEscalatedAt": report.last_escalated_at.isoformat() if report.last_escalated_at else None,
        "departmentId": report.department_id,
        "assignedToId": report.assigned_to_id,
        "upvoteCount": report.upvote_count,
        "viewCount": report.view_count,
        "reporterId": report.reporter_id,
        "createdAt": report.created_at.isoformat() if report.created_at else None,
        "updatedAt": report.updated_at.isoformat() if report.updated_at else None,
        "resolvedAt": report.resolved_at.isoformat() if report.resolved_at else None,
    }
