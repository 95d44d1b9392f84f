"""Ordered key-value storage adapters."""

from .kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    PrefixedKeyValueStore,
    SqlKeyValueStore,
    build_key,
)

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqlKeyValueStore",
    "PrefixedKeyValueStore",
    "build_key",
]
