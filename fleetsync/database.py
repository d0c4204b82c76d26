# fleetsync/database.py
"""
Database connection, session management, and table creation for the agent's
own state (received event log, notification log). Uses SQLAlchemy; SQLite by
default, any SQLAlchemy URL works.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from fleetsync.config import settings

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,          # Auto-reconnect if DB connection drops
    # SQLite connections are shared between the event loop and FastAPI worker threads
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,                  # Set True to log all SQL queries (debug only)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency. Yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from fleetsync.models.sync_event import SyncEvent        # noqa
    from fleetsync.models.notification import Notification   # noqa

    Base.metadata.create_all(bind=engine)
