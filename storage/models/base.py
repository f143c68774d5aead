"""
Base ORM Model.

============================================================
PURPOSE
============================================================
Declarative base shared by the pipeline's SQL tables.

Timestamps are stored as naive UTC values so that SQLite and
PostgreSQL compare them the same way. Use ``to_db_time`` and
``from_db_time`` at the ORM boundary.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all pipeline tables."""

    type_annotation_map = {
        datetime: DateTime(timezone=False),
    }


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC -> aware datetime."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
