"""Key-value store backends for durable alert state."""

from __future__ import annotations

import abc
import asyncio
import datetime
import sqlite3
import threading
from pathlib import Path

import structlog

from stockly.storage.exceptions import KeyValueStoreError

logger = structlog.stdlib.get_logger()


class KeyValueStore(abc.ABC):
    """Minimal async string key-value store."""

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abc.abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*. Missing keys are ignored."""

    async def close(self) -> None:
        """Release resources."""


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Counts physical writes."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(data or {})
        self.write_count = 0

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def put(self, key: str, value: str) -> None:
        self.write_count += 1
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """Single-table SQLite key-value store.

    Blocking sqlite calls run in a worker thread via ``asyncio.to_thread``;
    one connection is shared and guarded by a lock.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if str(self._path) != ":memory:":
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._conn.commit()
        return self._conn

    def _get_sync(self, key: str) -> str | None:
        with self._lock:
            row = self._connection().execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def _put_sync(self, key: str, value: str) -> None:
        now = datetime.datetime.now(datetime.UTC).isoformat(timespec="seconds")
        with self._lock:
            conn = self._connection()
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )
            conn.commit()

    def _delete_sync(self, key: str) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except sqlite3.Error as exc:
            raise KeyValueStoreError(f"kv read failed for {key}: {exc}") from exc

    async def put(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, value)
        except sqlite3.Error as exc:
            raise KeyValueStoreError(f"kv write failed for {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete_sync, key)
        except sqlite3.Error as exc:
            raise KeyValueStoreError(f"kv delete failed for {key}: {exc}") from exc

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        logger.debug("kv_store_closed", path=str(self._path))
