# infrastructure/key_value_store.py
"""
Key-value storage substrate.

Async get/set/remove/multi_remove/get_all_keys over string values. Stores may
enforce a per-key value ceiling, which is what the chunked collection writes
are designed around.
"""

import asyncio
import datetime
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from infrastructure.chunking import encoded_length
from infrastructure.errors import ValueTooLargeError


class KeyValueStore(ABC):
    """Async key-value primitive. Every call may fail independently."""

    def __init__(self, max_value_bytes: Optional[int] = None):
        self.max_value_bytes = max_value_bytes

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...

    @abstractmethod
    async def get_all_keys(self) -> List[str]:
        ...

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            await self.remove(key)

    async def close(self) -> None:
        """Release resources. No-op by default."""

    def _check_size(self, key: str, value: str):
        if self.max_value_bytes is None:
            return
        size = encoded_length(value)
        if size > self.max_value_bytes:
            raise ValueTooLargeError(key, size, self.max_value_bytes)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store, for tests."""

    def __init__(self, max_value_bytes: Optional[int] = None):
        super().__init__(max_value_bytes)
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Value for '{key}' must be a string")
        self._check_size(key, value)
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self._data.pop(key, None)

    async def get_all_keys(self) -> List[str]:
        return list(self._data.keys())


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed store, one row per key.

    The sqlite3 calls are blocking, so each one runs in a worker thread.
    """

    def __init__(self, db_path: str, max_value_bytes: Optional[int] = None):
        super().__init__(max_value_bytes)
        db_dir = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        self.init_db()

    def get_connection(self):
        return sqlite3.connect(self.db_path)

    def init_db(self):
        """Initialize the database schema."""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP
            )
        ''')

        conn.commit()
        conn.close()

    # ------------------------------------------------------------------ #
    #  Async API
    # ------------------------------------------------------------------ #

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Value for '{key}' must be a string")
        self._check_size(key, value)
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, [key])

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            await asyncio.to_thread(self._remove, keys)

    async def get_all_keys(self) -> List[str]:
        return await asyncio.to_thread(self._get_all_keys)

    # ------------------------------------------------------------------ #
    #  Blocking implementation
    # ------------------------------------------------------------------ #

    def _get(self, key: str) -> Optional[str]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT value FROM kv_store WHERE key = ?', (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def _set(self, key: str, value: str):
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            ''', (key, value, datetime.datetime.now().isoformat()))

    def _remove(self, keys: List[str]):
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.executemany('DELETE FROM kv_store WHERE key = ?', [(k,) for k in keys])

    def _get_all_keys(self) -> List[str]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT key FROM kv_store ORDER BY key')
            return [row[0] for row in cursor.fetchall()]

    # ------------------------------------------------------------------ #
    #  Maintenance
    # ------------------------------------------------------------------ #

    def get_db_path(self) -> str:
        return os.path.abspath(self.db_path)

    def check_integrity(self) -> bool:
        """Run a SQLite integrity check."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA integrity_check")
            result = cursor.fetchone()[0]
            return result == "ok"

    def get_stats(self) -> Dict:
        """Get store statistics."""
        stats = {}
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*), COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv_store")
            count, total_bytes = cursor.fetchone()
            stats['total_keys'] = count
            stats['total_value_bytes'] = total_bytes

        if os.path.exists(self.db_path):
            stats['db_size_kb'] = os.path.getsize(self.db_path) / 1024
        else:
            stats['db_size_kb'] = 0

        return stats
