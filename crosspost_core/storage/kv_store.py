"""
Ordered key-value storage.

All durable state (authorization records, link sets, encrypted credentials,
access log) lives behind ``KeyValueStore``. Keys are ``/``-separated strings
and ``list`` returns entries in key order. ``update`` is the per-key atomic
read-modify-write primitive used for every set-valued record.
"""

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, NoReturn, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_base import ensure_utc, utc_now
from ..db.db_config import DatabaseManager
from ..db.db_kv_models import KeyValueEntry
from ..exceptions import BaseError, ErrorCode, StorageError, ValidationError
from ..utils.keyed_lock import KeyedLock
from ..utils.logger import get_logger

Updater = Callable[[Optional[Any]], Optional[Any]]


class KeyValueStore(ABC):
    """
    Interface of the ordered key-value collaborator.

    Values are JSON-compatible structures. Implementations hand out copies,
    so mutating a returned value never changes stored state.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value for key, or None if absent or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key, optionally expiring after ttl seconds."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if something was removed."""

    @abstractmethod
    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        """Return live (key, value) pairs whose key starts with prefix, in key order."""

    @abstractmethod
    def update(self, key: str, fn: Updater, ttl: Optional[float] = None) -> Optional[Any]:
        """
        Atomically replace the value of key with ``fn(current)``.

        ``current`` is None when the key is absent. Returning None from fn
        deletes the key. No other writer to the same key can interleave
        between the read and the write.

        Returns:
            The value written (None if the key was deleted)
        """


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for tests and single-process deployments."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[datetime]]] = {}
        self._guard = threading.Lock()
        self._key_locks = KeyedLock()

    def _expiry(self, ttl: Optional[float]) -> Optional[datetime]:
        return self._clock() + timedelta(seconds=ttl) if ttl is not None else None

    def _read(self, key: str) -> Optional[Any]:
        with self._guard:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def _write(self, key: str, value: Optional[Any], ttl: Optional[float]) -> bool:
        with self._guard:
            if value is None:
                return self._data.pop(key, None) is not None
            self._data[key] = (copy.deepcopy(value), self._expiry(ttl))
            return True

    def get(self, key: str) -> Optional[Any]:
        return self._read(key)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._key_locks.hold(key):
            self._write(key, value, ttl)

    def delete(self, key: str) -> bool:
        with self._key_locks.hold(key):
            return self._write(key, None, None)

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        now = self._clock()
        with self._guard:
            return [
                (key, copy.deepcopy(value))
                for key, (value, expires_at) in sorted(self._data.items())
                if key.startswith(prefix) and (expires_at is None or expires_at > now)
            ]

    def update(self, key: str, fn: Updater, ttl: Optional[float] = None) -> Optional[Any]:
        with self._key_locks.hold(key):
            new_value = fn(self._read(key))
            self._write(key, new_value, ttl)
            return copy.deepcopy(new_value)


class SqlKeyValueStore(KeyValueStore):
    """
    Store backed by the ``kv_entry`` table.

    Every call runs in its own short transaction. ``update`` locks the row
    with ``SELECT ... FOR UPDATE`` and also holds a process-local lock per
    key, which covers SQLite where row locks are not available.
    """

    MAX_INSERT_ATTEMPTS = 3

    def __init__(self, db_manager: DatabaseManager, clock: Callable[[], datetime] = utc_now):
        self.db_manager = db_manager
        self._clock = clock
        self._key_locks = KeyedLock()
        self.logger = get_logger()

    def _handle_db_error(self, e: Exception, operation_name: str, key: Optional[str]) -> NoReturn:
        if isinstance(e, BaseError):
            raise e
        self.logger.error(
            f"Database error in {operation_name}: {str(e)}",
            extra={"operation_name": operation_name, "key": key},
        )
        raise StorageError(
            f"Key-value {operation_name} failed",
            error_code=ErrorCode.STORAGE_ERROR,
            cause=e,
            operation_name=operation_name,
            key=key,
        ) from e

    @contextmanager
    def _session_operation(
        self, operation_name: str, key: Optional[str] = None
    ) -> Iterator[Session]:
        session = self.db_manager.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            self._handle_db_error(e, operation_name, key)
        finally:
            session.close()

    def _is_live(self, entry: Optional[KeyValueEntry]) -> bool:
        if entry is None:
            return False
        expires_at = ensure_utc(entry.expires_at)
        return expires_at is None or expires_at > self._clock()

    def _expiry(self, ttl: Optional[float]) -> Optional[datetime]:
        return self._clock() + timedelta(seconds=ttl) if ttl is not None else None

    def _apply(
        self, session: Session, entry: Optional[KeyValueEntry], key: str, value: Any, ttl
    ) -> None:
        if value is None:
            if entry is not None:
                session.delete(entry)
            return
        if entry is None:
            session.add(KeyValueEntry(key=key, value=value, expires_at=self._expiry(ttl)))
        else:
            entry.value = value
            entry.expires_at = self._expiry(ttl)

    def get(self, key: str) -> Optional[Any]:
        with self._session_operation("get", key) as session:
            entry = session.get(KeyValueEntry, key)
            return copy.deepcopy(entry.value) if self._is_live(entry) else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.update(key, lambda _current: value, ttl)

    def delete(self, key: str) -> bool:
        with self._key_locks.hold(key):
            with self._session_operation("delete", key) as session:
                entry = session.get(KeyValueEntry, key)
                if entry is None:
                    return False
                session.delete(entry)
                return True

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        with self._session_operation("list", prefix) as session:
            query = (
                select(KeyValueEntry)
                .where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                .order_by(KeyValueEntry.key)
            )
            # SQLite LIKE ignores ASCII case, so the prefix is re-checked here
            return [
                (entry.key, copy.deepcopy(entry.value))
                for entry in session.execute(query).scalars()
                if entry.key.startswith(prefix) and self._is_live(entry)
            ]

    def update(self, key: str, fn: Updater, ttl: Optional[float] = None) -> Optional[Any]:
        with self._key_locks.hold(key):
            for attempt in range(1, self.MAX_INSERT_ATTEMPTS + 1):
                try:
                    with self._session_operation("update", key) as session:
                        query = (
                            select(KeyValueEntry)
                            .where(KeyValueEntry.key == key)
                            .with_for_update()
                        )
                        entry = session.execute(query).scalar_one_or_none()
                        current = copy.deepcopy(entry.value) if self._is_live(entry) else None
                        new_value = fn(current)
                        self._apply(session, entry, key, new_value, ttl)
                    return copy.deepcopy(new_value)
                except StorageError as e:
                    # Another process inserted the row first; re-read and retry
                    if isinstance(e.cause, IntegrityError) and attempt < self.MAX_INSERT_ATTEMPTS:
                        continue
                    raise
        return None  # pragma: no cover


class PrefixedKeyValueStore(KeyValueStore):
    """View of another store confined to a namespace prefix."""

    def __init__(self, inner: KeyValueStore, namespace: str):
        self.inner = inner
        self.namespace = namespace.rstrip("/") + "/"

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[Any]:
        return self.inner.get(self._key(key))

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.inner.set(self._key(key), value, ttl)

    def delete(self, key: str) -> bool:
        return self.inner.delete(self._key(key))

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        offset = len(self.namespace)
        return [(key[offset:], value) for key, value in self.inner.list(self._key(prefix))]

    def update(self, key: str, fn: Updater, ttl: Optional[float] = None) -> Optional[Any]:
        return self.inner.update(self._key(key), fn, ttl)


def build_key(*parts: Any) -> str:
    """Join key segments with ``/``, rejecting segments that would break ordering."""
    segments = []
    for part in parts:
        segment = part.value if hasattr(part, "value") else str(part)
        if not segment or "/" in segment:
            raise ValidationError(
                "Key segments must be non-empty and must not contain '/'",
                field="key",
                error_code=ErrorCode.INVALID_FORMAT,
                segment=segment,
            )
        segments.append(segment)
    return "/".join(segments)
