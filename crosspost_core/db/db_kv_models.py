"""
Key-value table backing SqlKeyValueStore.

Keys are ordered strings (``credentials/twitter/u123``) so prefix listing
is an index range scan.
"""

from sqlalchemy import Column, DateTime, Index, String

from .db_base import JSONDocument, TimestampMixin
from .db_config import Base


class KeyValueEntry(Base, TimestampMixin):
    """One key with its JSON value and optional expiry."""

    __tablename__ = "kv_entry"

    key = Column(String(512), primary_key=True)
    value = Column(JSONDocument, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_kv_entry_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<KeyValueEntry(key='{self.key}', expires_at={self.expires_at})>"
