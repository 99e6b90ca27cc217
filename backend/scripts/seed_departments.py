#!/usr/bin/env python3
"""
Department Seed Script
Creates the departments the routing engine routes to.

Usage:
    python -m scripts.seed_departments
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from lapor.database import SessionLocal, init_db
from lapor.services.routing.departments import seed_departments


def main():
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        added = seed_departments(db)
        print(f"Departments seeded: {added} added.")
    except Exception as e:
        print(f"Error seeding departments: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
