"""
Durable Store: Authoritative Per-Group State Slots

Each group owns one namespace (its shard key) holding a single framed
blob under the state slot key. A put that returns Ok is durable; a put
that returns Err must leave the previously stored value readable.

Backends:
- InMemoryDurableStore: process-local dict, for tests and demos
- SQLiteDurableStore: WAL-mode SQLite file, survives restarts
- RedisDurableStore (redis_store.py): shared across processes
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from countdownmesh.core import constants as C
from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, Ok, Result, Timestamp

logger = logging.getLogger(__name__)


@runtime_checkable
class DurableStore(Protocol):
    """Namespaced key/value slots with atomic single-key writes."""

    async def get(self, namespace: str, key: str) -> Result[Optional[bytes], StorageError]:
        ...

    async def put(self, namespace: str, key: str, value: bytes) -> Result[None, StorageError]:
        ...

    async def close(self) -> None:
        ...


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================
class InMemoryDurableStore:
    """
    Dict-backed store.

    Values are copied on the way in and out so callers can never alias
    stored bytes.
    """

    __slots__ = ("_data", "_lock")

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], bytes] = {}
        self._lock = asyncio.Lock()

    async def get(self, namespace: str, key: str) -> Result[Optional[bytes], StorageError]:
        async with self._lock:
            value = self._data.get((namespace, key))
        return Ok(bytes(value) if value is not None else None)

    async def put(self, namespace: str, key: str, value: bytes) -> Result[None, StorageError]:
        async with self._lock:
            self._data[(namespace, key)] = bytes(value)
        return Ok(None)

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


# =============================================================================
# SQLITE BACKEND
# =============================================================================
class SQLiteDurableStore:
    """
    SQLite state store in WAL mode.

    Writes are single-statement upserts serialized by a thread lock, so a
    failed write leaves the prior row untouched.

    Usage:
        store = SQLiteDurableStore(Path("./data/durable/durable.db"))
        await store.initialize()
        await store.put(group.shard_key, "group", blob)
    """

    __slots__ = ("_db_path", "_conn", "_write_lock", "_closed")

    PRAGMAS = [
        "PRAGMA journal_mode = WAL",
        "PRAGMA synchronous = FULL",      # durable on return
        "PRAGMA temp_store = MEMORY",
        f"PRAGMA busy_timeout = {C.SQLITE_BUSY_TIMEOUT_MS}",
    ]

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv_store (
        namespace TEXT NOT NULL,
        key TEXT NOT NULL,
        value BLOB NOT NULL,
        updated_at INTEGER NOT NULL,
        PRIMARY KEY (namespace, key)
    ) WITHOUT ROWID;
    """

    UPSERT = """
    INSERT INTO kv_store (namespace, key, value, updated_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(namespace, key) DO UPDATE SET
        value = excluded.value,
        updated_at = excluded.updated_at
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()
        self._closed = False

    async def initialize(self) -> Result[None, StorageError]:
        """Open the database file, apply pragmas and create the table."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            for pragma in self.PRAGMAS:
                self._conn.execute(pragma)
            self._conn.execute(self.SCHEMA)

            logger.info(
                "Durable store initialized",
                extra={"backend": "sqlite", "db_path": str(self._db_path)},
            )
            return Ok(None)

        except (sqlite3.Error, OSError) as e:
            logger.error(f"Durable store initialization failed: {e}")
            return Err(StorageError.connection_failed(
                backend="sqlite",
                target=str(self._db_path),
                cause=e,
            ))

    async def get(self, namespace: str, key: str) -> Result[Optional[bytes], StorageError]:
        if self._conn is None or self._closed:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))

        try:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
            return Ok(bytes(row[0]) if row else None)

        except sqlite3.Error as e:
            return Err(StorageError.read_failed("sqlite", f"{namespace}/{key}", cause=e))

    async def put(self, namespace: str, key: str, value: bytes) -> Result[None, StorageError]:
        if self._conn is None or self._closed:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))

        try:
            with self._write_lock:
                self._conn.execute(
                    self.UPSERT,
                    (namespace, key, value, Timestamp.now().millis),
                )
            return Ok(None)

        except sqlite3.Error as e:
            return Err(StorageError.write_failed("sqlite", f"{namespace}/{key}", cause=e))

    async def close(self) -> None:
        self._closed = True
        if self._conn is not None:
            with self._write_lock:
                self._conn.close()
            self._conn = None
            logger.info("Durable store closed", extra={"backend": "sqlite"})
