from sqlmodel import create_engine, Session
from margin_tracker.core.config import settings

# Global engine instance, created lazily
_engine = None


def get_engine():
    global _engine

    if _engine is not None:
        return _engine

    # Supabase Postgres in deployment, local SQLite otherwise
    db_url = settings.DATABASE_URL or "sqlite:///./margin_tracker.db"

    # SQLite fix for multithreading
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}

    _engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    return _engine


def get_db():
    with Session(get_engine()) as session:
        yield session
