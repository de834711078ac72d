# authguard/app/db/base.py
"""
SQLAlchemy declarative base, plus re-exports of the engine and session
factory so models and stores import everything database-related from one place.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all AuthGuard ORM models."""
    pass


from authguard.app.db.session import (  # noqa: E402
    engine,
    AsyncSessionLocal,
    build_sessionmaker,
    create_engine_for,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionLocal",
    "build_sessionmaker",
    "create_engine_for",
]
