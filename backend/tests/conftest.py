"""
Shared fixtures.

Each test gets its own file-backed SQLite database (file-backed so several
connections and threads see the same data), an in-memory broker and a clock
the test can move.
"""
import os
import tempfile
from datetime import datetime, timedelta

# Settings are read at import time; point the app at a throwaway database
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='lapor-'), 'app.db')}",
)
os.environ.setdefault("RUN_BACKGROUND_JOBS", "false")
os.environ.setdefault("IDENTITY_MASTER_SECRET", "test-master-secret")

import pytest
from sqlalchemy.orm import sessionmaker

from lapor.database import build_engine, init_db
from lapor.services.events.broker import InMemoryBroker
from lapor.services.events.publisher import EventPublisher
from lapor.services.reports.identity_vault import IdentityVault
from lapor.services.routing.departments import seed_departments
from lapor.wiring import build_components


class FakeClock:
    """Callable clock frozen at a naive UTC instant."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'lapor.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    try:
        seed_departments(db)
    finally:
        db.close()
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def publisher(broker):
    return EventPublisher(broker, "report-store")


@pytest.fixture(scope="session")
def vault():
    return IdentityVault("test-master-secret")


@pytest.fixture
def components(session_factory, broker, clock, vault):
    """Fully wired consumers and scheduler on the in-memory broker."""
    return build_components(
        session_factory,
        broker=broker,
        clock=clock,
        admin_ids=["admin-1"],
        vault=vault,
    )


@pytest.fixture
def service(db, publisher, vault, clock):
    """ReportService with no consumers bound (events are only recorded)."""
    from lapor.services.reports.report_service import ReportService

    return ReportService(db, publisher=publisher, vault=vault, clock=clock)


@pytest.fixture
def make_report(service):
    """Submit a report through the service; returns (ORM row, submit result)."""

    def _make(title="Lampu jalan mati", description="Lampu di gang tiga mati sejak minggu lalu",
              category="INFRASTRUCTURE", visibility="PUBLIC", reporter_id="citizen-1"):
        result = service.submit_report(
            title=title,
            description=description,
            category=category,
            visibility=visibility,
            reporter_id=reporter_id,
        )
        return service.get_report(result["id"]), result

    return _make


@pytest.fixture
def force_status(session_factory):
    """
    Put a report into a status directly, bypassing the state machine.

    RECEIVED is only entered by operator tooling, so tests that start from
    RECEIVED or IN_REVIEW need a way in.
    """
    from sqlalchemy import update

    from lapor.models.db_models import ReportDB

    def _force(report_id, status, **values):
        db = session_factory()
        try:
            db.execute(update(ReportDB).where(ReportDB.id == report_id).values(status=status, **values))
            db.commit()
        finally:
            db.close()

    return _force
