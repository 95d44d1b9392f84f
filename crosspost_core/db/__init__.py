"""
SQLAlchemy models and database management.
"""

from .db_base import JSONDocument, TimestampMixin, ensure_utc, utc_now
from .db_config import Base, DatabaseConfig, DatabaseManager, import_all_models
from .db_kv_models import KeyValueEntry

__all__ = [
    # Base definitions
    "Base",
    "JSONDocument",
    "TimestampMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "import_all_models",
    # Models
    "KeyValueEntry",
]
