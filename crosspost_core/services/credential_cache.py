"""
In-process cache of decrypted credential bundles.

The cache is an ordinary object: build one, ``start()`` it, hand it to the
services that use it, and ``close()`` it on shutdown. Closing drops every
cached bundle so decrypted tokens do not outlive the cache.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from ..constants import Platform
from ..exceptions import ErrorCode, ServiceError
from ..schemas.credential_schemas import CredentialBundle
from ..utils.logger import get_logger

CacheKey = Tuple[str, str]


class CredentialCache:
    """Bounded LRU cache with a per-entry time-to-live."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._monotonic = monotonic
        self._entries: "OrderedDict[CacheKey, Tuple[CredentialBundle, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._started = False
        self.logger = get_logger()

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> "CredentialCache":
        with self._lock:
            self._started = True
        self.logger.debug(
            "Credential cache started",
            extra={"ttl_seconds": self.ttl_seconds, "max_entries": self.max_entries},
        )
        return self

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
            self._started = False
        self.logger.debug("Credential cache closed")

    def __enter__(self) -> "CredentialCache":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_started(self) -> None:
        if not self._started:
            raise ServiceError(
                "Credential cache used before start()",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="credential_cache",
            )

    @staticmethod
    def _key(platform: Platform, account_id: str) -> CacheKey:
        return (Platform(platform).value, account_id)

    def get(self, platform: Platform, account_id: str) -> Optional[CredentialBundle]:
        self._require_started()
        key = self._key(platform, account_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            bundle, stored_at = entry
            if self._monotonic() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return bundle

    def put(self, bundle: CredentialBundle) -> None:
        self._require_started()
        key = self._key(bundle.platform, bundle.account_id)
        with self._lock:
            self._entries[key] = (bundle, self._monotonic())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, platform: Platform, account_id: str) -> None:
        self._require_started()
        with self._lock:
            self._entries.pop(self._key(platform, account_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
