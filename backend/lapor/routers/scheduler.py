"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Manual escalation sweep, escalation statistics, hourly snapshot and the
routing rule tables.
"""
from fastapi import APIRouter, Depends, HTTPException, Header, Request

from ..config import INTERNAL_API_KEY
from ..errors import LaporError
from .reports import http_error


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


def get_components(request: Request):
    return request.app.state.components


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/escalation/sweep", response_model=dict)
async def run_escalation_sweep(
    components=Depends(get_components),
    _: bool = Depends(verify_internal_key),
):
    """
    Run one escalation sweep now.

    System-automatic - no user confirmation required.
    Skipped (not queued) when a sweep is already running.
    """
    try:
        return components.scheduler.run_sweep()
    except LaporError as e:
        raise http_error(e)


@router.get("/escalation/stats", response_model=dict)
async def get_escalation_stats(
    components=Depends(get_components),
    _: bool = Depends(verify_internal_key),
):
    """Pending escalation, escalated today, active reports per level."""
    return components.scheduler.get_stats()


@router.post("/escalation/hourly-report", response_model=dict)
async def run_hourly_report(
    components=Depends(get_components),
    _: bool = Depends(verify_internal_key),
):
    """
    Build the hourly escalation snapshot.

    Read-only - no state changes.
    """
    return components.scheduler.run_hourly_report()


@router.get("/routing/rules", response_model=dict)
async def get_routing_rules(
    components=Depends(get_components),
    _: bool = Depends(verify_internal_key),
):
    """Department keywords, priority buckets and the category fallback table."""
    return components.routing_engine.describe_rules()
