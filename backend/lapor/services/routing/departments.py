"""
Department seeding from the routing rule table.
"""
import logging
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import DepartmentDB
from .rules import DEPARTMENT_RULES

logger = logging.getLogger(__name__)


def seed_departments(db: Session) -> int:
    """Insert any department from DEPARTMENT_RULES that is missing. Returns rows added."""
    existing = {code for (code,) in db.query(DepartmentDB.code).all()}

    added = 0
    for code, name, _keywords in DEPARTMENT_RULES:
        if code in existing:
            continue
        db.add(DepartmentDB(id=str(uuid4()), code=code, name=name))
        added += 1

    if added:
        db.commit()
        logger.info(f"Seeded {added} department(s)")
    return added
