"""
Column types, clock helpers and mixins shared by the models.

Tests run on SQLite and production on PostgreSQL, so anything
dialect-specific is decided here.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JSONDocument(TypeDecorator):
    """
    A JSON value column: JSONB on PostgreSQL, the generic JSON type elsewhere.

    Bound values go through ``to_jsonable_python`` first, so datetimes, enums
    and pydantic models stored by callers come back as plain JSON.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        return None if value is None else to_jsonable_python(value)


class TimestampMixin:
    """``created_at`` set on insert, ``updated_at`` bumped on every update."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
