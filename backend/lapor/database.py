"""
Lapor Core - Database Configuration
PostgreSQL connection using SQLAlchemy
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL, DB_STATEMENT_TIMEOUT_MS


def _connect_args(url: str) -> dict:
    """Per-dialect connection options: bounded statements on PostgreSQL."""
    if url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    if url.startswith("sqlite"):
        # Sessions are used from the scheduler thread and request threads
        return {"check_same_thread": False}
    return {}


def build_engine(url: str = DATABASE_URL, **kwargs):
    """Create an engine for the given URL."""
    return create_engine(url, echo=False, connect_args=_connect_args(url), **kwargs)


# Create engine
engine = build_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """Dependency for FastAPI - yields database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database - create all tables."""
    # Models must be imported so their tables register on Base.metadata
    from .models import db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
