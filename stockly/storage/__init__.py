"""Storage backends — key-value store and the SQLite alert database."""

from stockly.storage.database import AlertDatabase
from stockly.storage.exceptions import AlertStoreError, KeyValueStoreError, StorageError
from stockly.storage.kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

__all__ = [
    "AlertDatabase",
    "AlertStoreError",
    "KeyValueStore",
    "KeyValueStoreError",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
    "StorageError",
]
