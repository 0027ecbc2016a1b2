"""
Database session management - SQLAlchemy engine and session factory.
This module provides the database connection and session dependency for FastAPI.
"""

from sqlalchemy import create_engine  # Creates the database connection pool
from sqlalchemy.orm import sessionmaker  # Factory for creating database sessions

from app.core.config import settings  # App configuration with DATABASE_URL

# ---------------------------------------------------------------------------
# DATABASE ENGINE
# ---------------------------------------------------------------------------
# - pool_pre_ping=True: check a pooled connection is alive before using it
#   (stale connections after a DB restart would otherwise break a stream
#   halfway through a pass).
# - SQLite needs check_same_thread=False because streaming responses touch
#   the database from a different thread than the one that opened it.
_connect_args = (
    {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
)

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

# ---------------------------------------------------------------------------
# SESSION FACTORY
# ---------------------------------------------------------------------------
# SessionLocal is a class (factory), not an instance. Call SessionLocal() to get a session.
#
# Request handlers get one through get_db(). Long-lived work (a generation
# stream outlives the request that started it) opens its own short sessions
# from this factory instead.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...

    The 'finally' block always closes the session, even if the route raises.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
