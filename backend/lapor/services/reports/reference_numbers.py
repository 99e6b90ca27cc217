"""
Reference Number Allocation

Reference numbers look like LP-2026-000042: a prefix, the calendar year and
a six-digit per-year sequence.

The per-year counter lives in reference_sequences and is only touched by a
single atomic increment-or-create statement, committed on its own before the
report row is inserted. A number handed out is therefore never handed out
again, even when the report insert that follows fails.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError

from ...errors import DependencyUnavailable
from ...models.db_models import ReferenceSequenceDB, utcnow

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "LP"

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def format_reference(year: int, sequence: int) -> str:
    """LP-<year>-<6-digit sequence>"""
    return f"{REFERENCE_PREFIX}-{year}-{sequence:06d}"


class ReferenceNumberAllocator:
    """
    Hands out reference numbers from the per-year sequence.

    Works on its own connection from the session's engine so the increment
    commits independently of the caller's unit of work.
    """

    def __init__(self, bind, clock: Callable[[], datetime] = utcnow):
        self.bind = bind
        self.clock = clock

    def allocate(self) -> str:
        """Reserve the next reference number for the current year."""
        year = self.clock().year
        sequence = self.next_value(year)
        return format_reference(year, sequence)

    def next_value(self, year: int) -> int:
        """Atomically increment (or create at 1) the counter for a year."""
        try:
            with self.bind.begin() as conn:
                upsert = _UPSERT_DIALECTS.get(conn.dialect.name)
                if upsert is not None:
                    return self._upsert(conn, upsert, year)
                return self._locked_increment(conn, year)
        except OperationalError as e:
            logger.error(f"Reference sequence unavailable for {year}: {e}")
            raise DependencyUnavailable(
                "Reference sequence store unavailable",
                {"year": year},
            ) from e

    def current_value(self, year: int) -> int:
        """Last number handed out for a year (0 if none)."""
        table = ReferenceSequenceDB.__table__
        with self.bind.connect() as conn:
            value = conn.execute(
                select(table.c.counter).where(table.c.year == year)
            ).scalar()
        return value or 0

    # =========================================================================
    # DIALECT PRIMITIVES
    # =========================================================================

    @staticmethod
    def _upsert(conn, dialect_insert, year: int) -> int:
        table = ReferenceSequenceDB.__table__
        stmt = dialect_insert(table).values(year=year, counter=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.year],
            set_={"counter": table.c.counter + 1},
        ).returning(table.c.counter)
        return conn.execute(stmt).scalar_one()

    @staticmethod
    def _locked_increment(conn, year: int) -> int:
        """Row-locked read-modify-write for dialects without upsert."""
        table = ReferenceSequenceDB.__table__
        current = conn.execute(
            select(table.c.counter).where(table.c.year == year).with_for_update()
        ).scalar()

        if current is None:
            try:
                with conn.begin_nested():
                    conn.execute(insert(table).values(year=year, counter=1))
                return 1
            except IntegrityError:
                # Another writer created the year first; lock its row
                current = conn.execute(
                    select(table.c.counter).where(table.c.year == year).with_for_update()
                ).scalar_one()

        conn.execute(
            update(table).where(table.c.year == year).values(counter=current + 1)
        )
        return current + 1
