"""Namespaced key-value storage backends.

The engine treats storage as an opaque collaborator: workflows and
credentials are written under a namespace and read back by key. Nothing
here is required for execution correctness; execution state itself lives
in memory only.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import aiosqlite


class KeyValueStore(ABC):
    """Async namespaced get/set/remove store."""

    @abstractmethod
    async def get(self, namespace: str, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set(self, namespace: str, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def remove(self, namespace: str, key: str) -> bool:
        ...

    @abstractmethod
    async def keys(self, namespace: str) -> list[str]:
        ...

    async def initialize(self) -> None:
        """Open underlying resources."""

    async def close(self) -> None:
        """Release underlying resources."""


class MemoryStore(KeyValueStore):
    """Process-local store. Values are JSON round-tripped so callers never share references."""

    def __init__(self):
        self._data: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, namespace: str, key: str, default: Any = None) -> Any:
        async with self._lock:
            raw = self._data.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else default

    async def set(self, namespace: str, key: str, value: Any) -> None:
        raw = json.dumps(value)
        async with self._lock:
            self._data.setdefault(namespace, {})[key] = raw

    async def remove(self, namespace: str, key: str) -> bool:
        async with self._lock:
            return self._data.get(namespace, {}).pop(key, None) is not None

    async def keys(self, namespace: str) -> list[str]:
        async with self._lock:
            return list(self._data.get(namespace, {}).keys())


class SqliteStore(KeyValueStore):
    """Key-value store persisted in SQLite."""

    def __init__(self, db_path: str = "./data/state.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database and create tables."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value_json TEXT NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (namespace, key)
            );

            CREATE INDEX IF NOT EXISTS idx_kv_namespace ON kv(namespace);
        """)
        await self._db.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, namespace: str, key: str, default: Any = None) -> Any:
        cursor = await self._db.execute(
            "SELECT value_json FROM kv WHERE namespace = ? AND key = ?",
            (namespace, key)
        )
        row = await cursor.fetchone()
        if not row:
            return default
        return json.loads(row["value_json"])

    async def set(self, namespace: str, key: str, value: Any) -> None:
        async with self._lock:
            await self._db.execute("""
                INSERT INTO kv (namespace, key, value_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = excluded.updated_at
            """, (namespace, key, json.dumps(value), time.time()))
            await self._db.commit()

    async def remove(self, namespace: str, key: str) -> bool:
        async with self._lock:
            result = await self._db.execute(
                "DELETE FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key)
            )
            await self._db.commit()
            return result.rowcount > 0

    async def keys(self, namespace: str) -> list[str]:
        cursor = await self._db.execute(
            "SELECT key FROM kv WHERE namespace = ? ORDER BY updated_at ASC",
            (namespace,)
        )
        rows = await cursor.fetchall()
        return [row["key"] for row in rows]

    async def cleanup_older_than(self, namespace: str, max_age_seconds: float) -> int:
        """Remove entries in a namespace not updated within max_age_seconds."""
        async with self._lock:
            cutoff = time.time() - max_age_seconds
            result = await self._db.execute(
                "DELETE FROM kv WHERE namespace = ? AND updated_at < ?",
                (namespace, cutoff)
            )
            await self._db.commit()
            return result.rowcount
