"""
Declarative base - every ORM model inherits from Base.

Importing app.models registers all tables on Base.metadata, which is what
create_all() (tests) and Alembic autogenerate look at.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared SQLAlchemy 2.0 declarative base."""
    pass
