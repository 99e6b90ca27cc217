"""
Report API Routes

Thin boundary over ReportService: intake, transitions, assignment,
tracking and engagement. Authentication happens upstream; the caller's
already-verified user id arrives in the X-Actor-Id header.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import (
    Conflict, DependencyUnavailable, InvalidTransition, LaporError, NotFound, ValidationError,
)
from ..models.db_models import ReportCategory, ReportStatus, ReportVisibility
from ..services.reports import ReportService, report_to_dict


router = APIRouter(prefix="/reports", tags=["reports"])


# =============================================================================
# ERROR MAPPING
# =============================================================================

ERROR_STATUS_CODES = [
    (ValidationError, 422),
    (InvalidTransition, 409),
    (NotFound, 404),
    (Conflict, 409),
    (DependencyUnavailable, 503),
]


def http_error(exc: LaporError) -> HTTPException:
    """Translate a core error into the HTTP response the caller sees."""
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())


def get_report_service(request: Request, db: Session = Depends(get_db)) -> ReportService:
    components = request.app.state.components
    return ReportService(db, publisher=components.report_publisher, vault=components.vault)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SubmitReportRequest(BaseModel):
    """Request to submit a new report."""
    title: str = Field(..., description="Short summary of the problem")
    description: str = Field(..., description="Full description")
    category: ReportCategory = Field(..., description="Report category")
    visibility: ReportVisibility = Field(default=ReportVisibility.PUBLIC, description="PUBLIC, PRIVATE or ANONYMOUS")


class UpdateReportRequest(BaseModel):
    """Reporter edit while the report is still PENDING."""
    title: Optional[str] = Field(None, description="New title")
    description: Optional[str] = Field(None, description="New description")


class TransitionRequest(BaseModel):
    """Request to move a report to a new status."""
    new_status: ReportStatus = Field(..., description="Target status")
    notes: Optional[str] = Field(None, description="Note stored in the status history")


class AssignRequest(BaseModel):
    """Request to assign a staff member."""
    assigned_to_id: str = Field(..., description="Staff user id")
    notes: Optional[str] = Field(None, description="Note stored in the status history")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def submit_report(
    request: SubmitReportRequest,
    service: ReportService = Depends(get_report_service),
    x_actor_id: Optional[str] = Header(None),
):
    """
    Submit a report.

    ANONYMOUS submissions get a one-time trackingToken in the response.
    """
    try:
        return service.submit_report(
            title=request.title,
            description=request.description,
            category=request.category,
            visibility=request.visibility,
            reporter_id=x_actor_id,
        )
    except LaporError as e:
        raise http_error(e)


@router.patch("/{report_id}", response_model=dict)
async def update_report(
    report_id: str,
    request: UpdateReportRequest,
    service: ReportService = Depends(get_report_service),
    x_actor_id: Optional[str] = Header(None),
):
    """Edit title/description while PENDING. Reporter only."""
    try:
        report = service.update_report(
            report_id,
            actor_id=x_actor_id,
            title=request.title,
            description=request.description,
        )
    except LaporError as e:
        raise http_error(e)
    return report_to_dict(report)


@router.post("/{report_id}/status", response_model=dict)
async def transition_status(
    report_id: str,
    request: TransitionRequest,
    service: ReportService = Depends(get_report_service),
    x_actor_id: Optional[str] = Header(None),
):
    """Move a report through the state machine."""
    try:
        report = service.transition_status(
            report_id,
            request.new_status,
            actor_id=x_actor_id,
            notes=request.notes,
        )
    except LaporError as e:
        raise http_error(e)
    return report_to_dict(report)


@router.post("/{report_id}/assign", response_model=dict)
async def assign_report(
    report_id: str,
    request: AssignRequest,
    service: ReportService = Depends(get_report_service),
    x_actor_id: Optional[str] = Header(None),
):
    """Assign a staff member (IN_REVIEW -> ASSIGNED, otherwise assignee only)."""
    try:
        report = service.assign_report(
            report_id,
            request.assigned_to_id,
            actor_id=x_actor_id,
            notes=request.notes,
        )
    except LaporError as e:
        raise http_error(e)
    return report_to_dict(report)


@router.get("/track/{reference_number}", response_model=dict)
async def track_report(
    reference_number: str,
    service: ReportService = Depends(get_report_service),
    x_tracking_token: Optional[str] = Header(None),
):
    """
    Public tracking by reference number.

    ANONYMOUS reports need X-Tracking-Token. Wrong token and unknown
    reference number give the same 404.
    """
    try:
        return service.track_by_reference(reference_number, x_tracking_token)
    except NotFound:
        raise HTTPException(status_code=404, detail=NotFound("Report").to_dict())
    except LaporError as e:
        raise http_error(e)


@router.post("/{report_id}/upvote", response_model=dict)
async def upvote_report(
    report_id: str,
    service: ReportService = Depends(get_report_service),
    x_actor_id: Optional[str] = Header(None),
):
    try:
        count = service.upvote(report_id, x_actor_id)
    except LaporError as e:
        raise http_error(e)
    return {"report_id": report_id, "upvote_count": count}


@router.post("/{report_id}/view", response_model=dict)
async def record_view(
    report_id: str,
    service: ReportService = Depends(get_report_service),
):
    try:
        count = service.record_view(report_id)
    except LaporError as e:
        raise http_error(e)
    return {"report_id": report_id, "view_count": count}
