"""
Escalation Scheduler

AUTHORITY: SYSTEM
Runs the escalation sweep on a fixed interval and the hourly snapshot on a
slower one, in a background thread.

Single flight: a sweep that is still running when the next trigger fires
(timer or manual) is skipped, not queued. The in-process lock only covers
this process. On PostgreSQL the sweep also takes a session-level advisory
lock so that only one instance sweeps at a time; other dialects get no
cross-instance guarantee.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ...config import (
    ESCALATION_CHECK_INTERVAL_SECONDS,
    ESCALATION_REPORT_INTERVAL_SECONDS,
    MAX_ESCALATION_LEVEL,
)
from ...models.db_models import utcnow
from ..events.publisher import EventPublisher
from .escalation_service import EscalationService

logger = logging.getLogger(__name__)

# Arbitrary, stable key for pg_try_advisory_lock
SWEEP_ADVISORY_LOCK_KEY = 7_204_311


class EscalationScheduler:
    """Periodic driver for EscalationService."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        publisher: Optional[EventPublisher] = None,
        interval_seconds: int = ESCALATION_CHECK_INTERVAL_SECONDS,
        report_interval_seconds: int = ESCALATION_REPORT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        max_level: int = MAX_ESCALATION_LEVEL,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.interval_seconds = interval_seconds
        self.report_interval_seconds = report_interval_seconds
        self.clock = clock
        self.max_level = max_level

        self._sweep_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_report_at: Optional[datetime] = None
        self.last_sweep: Optional[Dict[str, Any]] = None
        self.last_report: Optional[Dict[str, Any]] = None

    def _service(self, db: Session) -> EscalationService:
        return EscalationService(db, publisher=self.publisher, clock=self.clock, max_level=self.max_level)

    @property
    def is_running(self) -> bool:
        return self._sweep_lock.locked()

    # =========================================================================
    # JOBS
    # =========================================================================

    def run_sweep(self) -> Dict[str, Any]:
        """
        Run one sweep unless one is already in progress.

        Returns the sweep summary, or {"skipped": True, ...} when another
        sweep holds the lock (here or, on PostgreSQL, in another instance).
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.warning("Escalation sweep already running, skipping this trigger")
            return {"skipped": True, "reason": "sweep already running"}

        db = self.session_factory()
        try:
            lock = self._acquire_cluster_lock(db)
            if lock is None:
                logger.warning("Escalation sweep running on another instance, skipping")
                return {"skipped": True, "reason": "sweep running on another instance"}
            try:
                result = self._service(db).run_sweep()
            finally:
                self._release_cluster_lock(lock)
            self.last_sweep = result
            return result
        finally:
            db.close()
            self._sweep_lock.release()

    def run_hourly_report(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            report = self._service(db).hourly_report()
        finally:
            db.close()
        self._last_report_at = self.clock()
        self.last_report = report
        return report

    def get_stats(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            stats = self._service(db).get_stats()
        finally:
            db.close()
        stats["sweep_running"] = self.is_running
        stats["last_sweep_at"] = self.last_sweep["run_date"] if self.last_sweep else None
        return stats

    # =========================================================================
    # CROSS-INSTANCE LOCK (POSTGRESQL)
    # =========================================================================

    @staticmethod
    def _acquire_cluster_lock(db: Session):
        """
        Take the sweep advisory lock on a dedicated connection.

        Returns the connection holding the lock, None when another instance
        holds it, or True on dialects without advisory locks.
        """
        bind = db.get_bind()
        if bind.dialect.name != "postgresql":
            return True
        conn = bind.connect()
        acquired = conn.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": SWEEP_ADVISORY_LOCK_KEY}
        ).scalar()
        conn.commit()
        if not acquired:
            conn.close()
            return None
        return conn

    @staticmethod
    def _release_cluster_lock(lock) -> None:
        if lock is True or lock is None:
            return
        try:
            lock.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": SWEEP_ADVISORY_LOCK_KEY})
            lock.commit()
        finally:
            lock.close()

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def _tick(self) -> None:
        try:
            self.run_sweep()
        except Exception as e:
            logger.error(f"Escalation sweep crashed: {e}")

        now = self.clock()
        due = (
            self._last_report_at is None
            or (now - self._last_report_at).total_seconds() >= self.report_interval_seconds
        )
        if due:
            try:
                self.run_hourly_report()
            except Exception as e:
                logger.error(f"Hourly escalation report failed: {e}")

    def _loop(self) -> None:
        logger.info(
            f"Escalation scheduler started: sweep every {self.interval_seconds}s, "
            f"report every {self.report_interval_seconds}s"
        )
        self._tick()
        while not self._stop.wait(self.interval_seconds):
            self._tick()
        logger.info("Escalation scheduler stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="lapor-escalation", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
