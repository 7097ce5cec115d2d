"""
Create the tables on a local development database and check connectivity.

The Supabase schema is managed in Supabase itself; run this only against a
local SQLite or Postgres database.
"""
import sys
import os
from sqlmodel import SQLModel, Session, select

# Add current directory to path so we can import margin_tracker
sys.path.append(os.getcwd())

from margin_tracker.db.session import get_engine
from margin_tracker import models  # noqa: F401  (registers the tables)
from margin_tracker.models import Project


def verify_database():
    print("--- Database Verification ---")
    engine = get_engine()
    try:
        print("Attempting to create tables...")
        SQLModel.metadata.create_all(engine)
        print("Table creation/verification successful.")

        with Session(engine) as session:
            session.exec(select(Project).limit(1)).first()
            print("Database connection test: SUCCESS")
    except Exception as e:
        print("Database connection test: FAILED")
        print(f"Error: {e}")
        if "supabase" in str(e).lower() or "postgres" in str(e).lower():
            print("\nTIP: Check DATABASE_URL in .env and that your IP is allowed by the database.")
        sys.exit(1)


if __name__ == "__main__":
    verify_database()
