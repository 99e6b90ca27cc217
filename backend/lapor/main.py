"""
Lapor Core - FastAPI Application

Main entry point for the citizen report lifecycle core.

Architecture:
- Intake -> Report Store (PENDING, reference number, history ledger)
- report.created -> Routing Consumer -> department + priority
- Escalation Scheduler -> overdue sweep -> report.escalated
- Lifecycle events -> Notification Fan-out
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import LOG_LEVEL, RUN_BACKGROUND_JOBS
from .database import SessionLocal, init_db
from .routers import reports_router, scheduler_router
from .services.routing.departments import seed_departments
from .wiring import build_components

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, wire consumers and start background jobs."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    db = SessionLocal()
    try:
        seed_departments(db)
    finally:
        db.close()

    components = build_components(SessionLocal)
    components.broker.start()
    if RUN_BACKGROUND_JOBS:
        components.scheduler.start()
    app.state.components = components
    logger.info("Lapor Core started")

    yield

    components.scheduler.stop()
    components.broker.close()
    logger.info("Lapor Core stopped")

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Lapor Core",
    description="""
    Lapor Core - Citizen Report Lifecycle Orchestration

    Ingests citizen complaints, routes them to the responsible department,
    tracks them through the resolution workflow and escalates anything that
    overruns its SLA deadline.

    ## Pipeline
    1. **Intake**: report stored in PENDING with a unique reference number
    2. **Routing**: keyword classification assigns department and priority
    3. **Workflow**: every status change is validated and written to history
    4. **Escalation**: overdue reports are escalated on a fixed interval

    ## Key Principles
    - Reference numbers are never reused
    - Status changes and history entries are written together
    - Events are published only after commit
    - Consumers are idempotent per event id
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reports_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Lapor Core",
        "version": "1.0.0",
        "description": "Citizen Report Lifecycle Orchestration",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m lapor.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
