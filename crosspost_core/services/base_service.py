"""
Base service with functionality shared by the key-value backed services.
"""

from datetime import datetime
from typing import Callable, Optional

from ..db.db_base import utc_now
from ..storage.kv_store import KeyValueStore
from ..utils.logger import get_logger


class BaseService:
    """Holds the store, clock and logger."""

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now
        self.logger = get_logger()
