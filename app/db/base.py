"""Declarative base for all SQLAlchemy models."""

import enum

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ORM models."""

    pass


def enum_values(enum_class: type[enum.Enum]) -> list[str]:
    """Persist enum values ("user") rather than member names ("USER")."""
    return [member.value for member in enum_class]
