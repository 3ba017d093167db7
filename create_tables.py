"""
Create the threads and messages tables.
Run this once to set up the tables in your database; the API also runs it at startup.

Usage: python create_tables.py
"""

from typing import List

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from models import Base, Thread, Message  # Import models to register them

REQUIRED_TABLES = (Thread.__tablename__, Message.__tablename__)


def create_tables(bind: Engine) -> List[str]:
    """Create any missing tables and return the names still missing afterwards."""
    Base.metadata.create_all(bind=bind)
    existing = set(inspect(bind).get_table_names())
    return [table for table in REQUIRED_TABLES if table not in existing]


if __name__ == "__main__":
    from database import engine

    print("Creating database tables...")
    missing = create_tables(engine)

    for table in REQUIRED_TABLES:
        if table in missing:
            print(f"✗ Failed to create {table} table")
        else:
            print(f"✓ {table.capitalize()} table created successfully!")

    engine.dispose()
