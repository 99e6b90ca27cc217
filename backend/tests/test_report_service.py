"""
Tests for ReportService.

1. Submission: validation, initial state, history, report.created
2. Anonymous submission: tracking token, sealed identity
3. Tracking: public view, anonymous token check, uniform not-found
4. Reporter edits while PENDING
5. Assignment and reassignment
6. Upvotes and views
"""
from datetime import timedelta

import pytest

from lapor.errors import (
    Conflict, InvalidTrackingToken, InvalidTransition, NotFound, ValidationError,
)
from lapor.models.db_models import AnonymousIdentityDB, ReportStatus, ReportVisibility
from lapor.models.events import EventType
from lapor.services.reports.report_service import report_to_dict


# =============================================================================
# TEST: SUBMISSION
# =============================================================================

class TestSubmitReport:
    """submit_report()"""

    def test_initial_state(self, make_report, clock):
        report, result = make_report()

        assert result["id"] == report.id
        assert result["referenceNumber"] == report.reference_number
        assert "trackingToken" not in result

        assert report.status == ReportStatus.PENDING
        assert report.priority == 3
        assert report.escalation_level == 1
        assert report.department_id is None
        assert report.reporter_id == "citizen-1"
        assert report.upvote_count == 0
        assert report.view_count == 0
        assert report.created_at == clock.now
        assert report.sla_deadline == clock.now + timedelta(hours=168)

    def test_creation_history_entry(self, service, make_report):
        """One synthetic PENDING -> PENDING entry."""
        report, _ = make_report()

        history = service.get_history(report.id)
        assert len(history) == 1
        assert history[0].old_status == ReportStatus.PENDING
        assert history[0].new_status == ReportStatus.PENDING
        assert history[0].notes == "Report submitted"
        assert history[0].changed_by == "citizen-1"

    def test_publishes_report_created(self, make_report, broker):
        report, _ = make_report(category="CLEANLINESS")

        events = broker.events_of(EventType.REPORT_CREATED)
        assert len(events) == 1
        payload = events[0].payload
        assert payload["reportId"] == report.id
        assert payload["referenceNumber"] == report.reference_number
        assert payload["category"] == "CLEANLINESS"
        assert payload["status"] == "PENDING"
        assert payload["reporterId"] == "citizen-1"

    def test_whitespace_is_trimmed(self, make_report):
        report, _ = make_report(title="  Lampu mati  ")
        assert report.title == "Lampu mati"

    @pytest.mark.parametrize("field,kwargs", [
        ("title", {"title": ""}),
        ("title", {"title": "   "}),
        ("title", {"title": "x" * 256}),
        ("description", {"description": None}),
        ("category", {"category": "WEATHER"}),
        ("visibility", {"visibility": "SECRET"}),
        ("reporterId", {"reporter_id": None}),
    ])
    def test_validation(self, make_report, broker, field, kwargs):
        with pytest.raises(ValidationError) as exc_info:
            make_report(**kwargs)

        assert exc_info.value.field == field
        assert exc_info.value.details == {"field": field}
        assert broker.published == []

    def test_private_requires_reporter(self, make_report):
        with pytest.raises(ValidationError):
            make_report(visibility="PRIVATE", reporter_id=None)

    def test_validation_does_not_consume_a_number(self, make_report):
        with pytest.raises(ValidationError):
            make_report(category="WEATHER")

        _, result = make_report()
        assert result["referenceNumber"].endswith("-000001")


# =============================================================================
# TEST: ANONYMOUS SUBMISSION
# =============================================================================

class TestAnonymousSubmission:

    def test_token_returned_once_and_identity_sealed(self, make_report, db, service):
        report, result = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")

        assert len(result["trackingToken"]) == 32
        assert report.visibility == ReportVisibility.ANONYMOUS
        assert report.reporter_id is None

        identity = db.get(AnonymousIdentityDB, report.id)
        assert identity is not None
        assert "citizen-7" not in identity.encrypted_reporter_id
        assert identity.tracking_token_hash != result["trackingToken"]

        assert service.reveal_reporter(report.id) == "citizen-7"

    def test_anonymous_event_has_no_reporter(self, make_report, broker):
        make_report(visibility="ANONYMOUS", reporter_id="citizen-7")

        payload = broker.events_of(EventType.REPORT_CREATED)[0].payload
        assert payload["reporterId"] is None
        assert "citizen-7" not in events_json(broker)

    def test_anonymous_history_has_no_actor(self, make_report, service):
        report, _ = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")
        assert service.get_history(report.id)[0].changed_by is None

    def test_anonymous_without_submitter_gets_no_token(self, make_report, db):
        report, result = make_report(visibility="ANONYMOUS", reporter_id=None)

        assert "trackingToken" not in result
        assert db.get(AnonymousIdentityDB, report.id) is None

    def test_reveal_on_public_report(self, make_report, service):
        report, _ = make_report()
        with pytest.raises(NotFound):
            service.reveal_reporter(report.id)


def events_json(broker):
    return " ".join(event.to_json() for event in broker.published)


# =============================================================================
# TEST: TRACKING
# =============================================================================

class TestTracking:
    """track_by_reference()"""

    def test_public_report(self, make_report, service):
        report, result = make_report()
        service.transition_status(report.id, ReportStatus.IN_PROGRESS, notes="Dicek petugas")

        view = service.track_by_reference(result["referenceNumber"])

        assert view["referenceNumber"] == result["referenceNumber"]
        assert view["status"] == "IN_PROGRESS"
        assert view["category"] == "INFRASTRUCTURE"
        assert view["department"] is None
        assert view["resolvedAt"] is None
        assert [(h["oldStatus"], h["newStatus"]) for h in view["history"]] == [
            ("PENDING", "PENDING"),
            ("PENDING", "IN_PROGRESS"),
        ]
        assert view["history"][1]["notes"] == "Dicek petugas"
        # Never exposes who filed it
        assert "reporterId" not in view
        assert "id" not in view

    def test_unknown_reference(self, service):
        with pytest.raises(NotFound) as exc_info:
            service.track_by_reference("LP-2026-999999")
        assert exc_info.value.details == {}

    def test_anonymous_with_token(self, make_report, service):
        _, result = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")

        view = service.track_by_reference(result["referenceNumber"], result["trackingToken"])
        assert view["status"] == "PENDING"

    @pytest.mark.parametrize("token", [None, "", "0" * 32, "A" * 100, "é" * 40])
    def test_anonymous_bad_token_looks_like_not_found(self, make_report, service, token):
        _, result = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")

        with pytest.raises(InvalidTrackingToken) as exc_info:
            service.track_by_reference(result["referenceNumber"], token)

        missing = NotFound("Report")
        assert isinstance(exc_info.value, NotFound)
        assert exc_info.value.to_dict() == missing.to_dict()

    def test_token_of_another_report(self, make_report, service):
        _, first = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")
        _, second = make_report(visibility="ANONYMOUS", reporter_id="citizen-7")

        with pytest.raises(InvalidTrackingToken):
            service.track_by_reference(first["referenceNumber"], second["trackingToken"])

    def test_untrackable_anonymous_report(self, make_report, service):
        _, result = make_report(visibility="ANONYMOUS", reporter_id=None)

        with pytest.raises(InvalidTrackingToken):
            service.track_by_reference(result["referenceNumber"], "ANYTHING")


# =============================================================================
# TEST: REPORTER EDITS
# =============================================================================

class TestUpdateReport:

    def test_update_while_pending(self, make_report, service, broker, clock):
        report, _ = make_report()
        clock.advance(minutes=5)

        service.update_report(report.id, "citizen-1", title="Lampu jalan mati total")

        updated = service.get_report(report.id)
        assert updated.title == "Lampu jalan mati total"
        assert updated.updated_at == clock.now

        events = broker.events_of(EventType.REPORT_UPDATED)
        assert len(events) == 1
        assert events[0].payload["changes"] == {
            "title": {"old": "Lampu jalan mati", "new": "Lampu jalan mati total"},
        }
        assert events[0].payload["updatedBy"] == "citizen-1"

    def test_no_change_publishes_nothing(self, make_report, service, broker):
        report, _ = make_report()
        service.update_report(report.id, "citizen-1", title="Lampu jalan mati")
        assert broker.events_of(EventType.REPORT_UPDATED) == []

    def test_other_user_gets_not_found(self, make_report, service):
        report, _ = make_report()
        with pytest.raises(NotFound):
            service.update_report(report.id, "citizen-2", title="Diubah orang lain")

    def test_not_pending(self, make_report, service):
        report, _ = make_report()
        service.transition_status(report.id, ReportStatus.IN_PROGRESS)

        with pytest.raises(Conflict):
            service.update_report(report.id, "citizen-1", description="Terlambat")

    def test_blank_title_rejected(self, make_report, service):
        report, _ = make_report()
        with pytest.raises(ValidationError):
            service.update_report(report.id, "citizen-1", title=" ")


# =============================================================================
# TEST: ASSIGNMENT
# =============================================================================

class TestAssignReport:

    def test_assign_from_in_review(self, make_report, service, broker, force_status):
        report, _ = make_report()
        force_status(report.id, ReportStatus.IN_REVIEW)

        service.assign_report(report.id, "staff-9", actor_id="supervisor-1")

        assigned = service.get_report(report.id)
        assert assigned.status == ReportStatus.ASSIGNED
        assert assigned.assigned_to_id == "staff-9"

        last = service.get_history(report.id)[-1]
        assert (last.old_status, last.new_status) == (ReportStatus.IN_REVIEW, ReportStatus.ASSIGNED)
        assert last.notes == "Assigned to staff-9"

        changed = broker.events_of(EventType.REPORT_STATUS_CHANGED)
        assert [e.payload["newStatus"] for e in changed] == ["ASSIGNED"]
        assigned_events = broker.events_of(EventType.REPORT_ASSIGNED)
        assert len(assigned_events) == 1
        assert assigned_events[0].payload["assignedToId"] == "staff-9"
        assert assigned_events[0].payload["assignedBy"] == "supervisor-1"

    def test_reassign(self, make_report, service, broker, force_status):
        report, _ = make_report()
        force_status(report.id, ReportStatus.IN_REVIEW)
        service.assign_report(report.id, "staff-9")
        history_before = len(service.get_history(report.id))

        service.assign_report(report.id, "staff-10")

        assert service.get_report(report.id).assigned_to_id == "staff-10"
        assert len(service.get_history(report.id)) == history_before
        assert len(broker.events_of(EventType.REPORT_STATUS_CHANGED)) == 1
        assert len(broker.events_of(EventType.REPORT_ASSIGNED)) == 2

    def test_assign_while_in_progress(self, make_report, service, broker, clock):
        """Outside IN_REVIEW the assignee changes and the status stays."""
        report, _ = make_report()
        service.transition_status(report.id, ReportStatus.IN_PROGRESS)
        history_before = len(service.get_history(report.id))
        clock.advance(minutes=10)

        service.assign_report(report.id, "staff-7", actor_id="supervisor-1")

        assigned = service.get_report(report.id)
        assert assigned.status == ReportStatus.IN_PROGRESS
        assert assigned.assigned_to_id == "staff-7"
        assert assigned.updated_at == clock.now
        assert len(service.get_history(report.id)) == history_before

        changed = broker.events_of(EventType.REPORT_STATUS_CHANGED)
        assert [e.payload["newStatus"] for e in changed] == ["IN_PROGRESS"]
        assigned_events = broker.events_of(EventType.REPORT_ASSIGNED)
        assert len(assigned_events) == 1
        assert assigned_events[0].payload["assignedToId"] == "staff-7"
        assert assigned_events[0].payload["status"] == "IN_PROGRESS"

    def test_assign_while_pending(self, make_report, service, broker):
        report, _ = make_report()

        service.assign_report(report.id, "staff-9")

        assert service.get_report(report.id).status == ReportStatus.PENDING
        assert service.get_report(report.id).assigned_to_id == "staff-9"
        assert len(broker.events_of(EventType.REPORT_ASSIGNED)) == 1

    def test_same_assignee_is_a_no_op(self, make_report, service, broker):
        report, _ = make_report()
        service.assign_report(report.id, "staff-9")

        service.assign_report(report.id, "staff-9")

        assert len(broker.events_of(EventType.REPORT_ASSIGNED)) == 1

    @pytest.mark.parametrize("status", [ReportStatus.CLOSED, ReportStatus.REJECTED])
    def test_assign_on_terminal_report_is_invalid(
        self, make_report, service, broker, force_status, status,
    ):
        report, _ = make_report()
        force_status(report.id, status)

        with pytest.raises(InvalidTransition) as exc_info:
            service.assign_report(report.id, "staff-9")

        assert exc_info.value.details["allowed"] == []
        assert service.get_report(report.id).assigned_to_id is None
        assert broker.events_of(EventType.REPORT_ASSIGNED) == []

    def test_assignee_required(self, make_report, service):
        report, _ = make_report()
        with pytest.raises(ValidationError):
            service.assign_report(report.id, "")

    def test_unknown_report(self, service):
        with pytest.raises(NotFound) as exc_info:
            service.assign_report("missing", "staff-9")
        assert exc_info.value.details == {"reportId": "missing"}


# =============================================================================
# TEST: ENGAGEMENT
# =============================================================================

class TestEngagement:

    def test_upvote(self, make_report, service):
        report, _ = make_report()

        assert service.upvote(report.id, "citizen-2") == 1
        assert service.upvote(report.id, "citizen-3") == 2

    def test_duplicate_upvote(self, make_report, service):
        report, _ = make_report()
        service.upvote(report.id, "citizen-2")

        with pytest.raises(Conflict):
            service.upvote(report.id, "citizen-2")
        assert service.get_report(report.id).upvote_count == 1

    def test_self_upvote(self, make_report, service):
        report, _ = make_report()
        with pytest.raises(Conflict):
            service.upvote(report.id, "citizen-1")

    def test_views(self, make_report, service):
        report, _ = make_report()

        assert service.record_view(report.id) == 1
        assert service.record_view(report.id) == 2
        assert report_to_dict(service.get_report(report.id))["viewCount"] == 2
