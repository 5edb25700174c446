"""
Key-value persistence for the engine's JSON state blobs (tracked manifests,
version records and the schema-migration marker).
"""

import asyncio
import logging
import sqlite3
from pathlib import Path

log = logging.getLogger(__name__)


class SqliteKeyValueStore:
    """
    A small SQLite-backed store of opaque string values keyed by name.
    Blocking calls run in a worker thread so the event loop stays responsive.
    """

    def __init__(self, config_dir_path: Path, filename: str = "state.sqlite"):
        self.db_path = config_dir_path / filename
        self._lock = asyncio.Lock()
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to state database: {e}")
            raise

    def _initialize_db(self) -> None:
        """Creates the database and table if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            conn.commit()

    async def _run_in_executor(self, func, *args):
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    def _get_sync(self, key: str) -> str | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def _set_sync(self, key: str, value: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO kv (key, value, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET "
                "value = excluded.value, updated_at = excluded.updated_at",
                (key, value),
            )
            conn.commit()

    def _remove_sync(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

    def _keys_sync(self) -> list[str]:
        with self._get_connection() as conn:
            return [row[0] for row in conn.execute("SELECT key FROM kv ORDER BY key")]

    async def get(self, key: str) -> str | None:
        """Returns the stored value, or None if the key is absent."""
        return await self._run_in_executor(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await self._run_in_executor(self._set_sync, key, value)

    async def remove(self, key: str) -> None:
        await self._run_in_executor(self._remove_sync, key)

    async def keys(self) -> list[str]:
        return await self._run_in_executor(self._keys_sync)


class MemoryKeyValueStore:
    """An in-process store with the same interface, for tests and dry runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)

    async def keys(self) -> list[str]:
        return sorted(self.data)
