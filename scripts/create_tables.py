"""
Create the field ops tables in the database.

Usage:
  python scripts/create_tables.py

This script creates all tables using SQLAlchemy's create_all().
It's safe to run multiple times - it won't recreate existing tables.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldops.config import settings
from fieldops.db import Base, engine
from fieldops.models.models import (
    AuditLog,
    Building,
    LocationPing,
    ProgressUpdate,
    ScheduleItem,
    SessionBreak,
    TimeSession,
    Worker,
    WorkOrder,
)


def create_tables():
    """Create all field ops tables"""
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    print("Creating tables...")

    tables = [
        Worker.__table__,
        Building.__table__,
        WorkOrder.__table__,
        TimeSession.__table__,
        SessionBreak.__table__,
        ProgressUpdate.__table__,
        ScheduleItem.__table__,
        LocationPing.__table__,
        AuditLog.__table__,
    ]
    Base.metadata.create_all(bind=engine, tables=tables)

    print("Tables created successfully!")
    print("\nTables created:")
    for table in tables:
        print(f"  - {table.name}")


if __name__ == "__main__":
    create_tables()
