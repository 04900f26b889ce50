"""Database package: declarative base, engine and request session dependency."""

from app.db.base import Base, enum_values
from app.db.session import get_db, engine, async_session_maker, dispose_engine

__all__ = ["Base", "enum_values", "get_db", "engine", "async_session_maker", "dispose_engine"]
