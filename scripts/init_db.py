#!/usr/bin/env python3
"""
Database Initialization Script

Creates the Badal Trust tables, constraints and indexes:
- pilgrim_certifications
- badal_reservations
- ritual_events
- completion_certificates
- certificate_sequences

Usage:
    docker-compose exec api python scripts/init_db.py
"""
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from badal_trust.db.database import Base, engine
from badal_trust.db import models  # noqa: F401  registers the tables on Base


def create_tables():
    """Create all tables that do not exist yet"""
    print("=" * 60)
    print("Creating Badal Trust Tables")
    print("=" * 60)

    Base.metadata.create_all(bind=engine)

    for table_name in Base.metadata.tables:
        print(f"  ✓ Table ready: {table_name}")

    print("\n" + "=" * 60)
    print("Initialization Complete!")
    print("=" * 60)


if __name__ == "__main__":
    create_tables()
