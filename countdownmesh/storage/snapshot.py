"""
Snapshot Sink: Relational Replica and Audit Log

After every durable commit the coordinator upserts the group's latest
snapshot and, for session mutations, appends one audit event. Both are
best effort: a sink returns Err instead of raising, and the coordinator
logs and counts the failure without touching the committed state.

Backends:
- NullSnapshotSink: discards everything
- InMemorySnapshotSink: tests and demos
- SQLiteSnapshotSink: local replica file
- PostgresSnapshotSink: asyncpg pool against a shared database
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

import asyncpg

from countdownmesh.core.config import SnapshotSinkConfig
from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, Ok, Result, Timestamp, new_event_id
from countdownmesh.storage.schema import SnapshotSchema

if TYPE_CHECKING:
    from countdownmesh.group.models import GroupState

logger = logging.getLogger(__name__)


# =============================================================================
# ROW TYPES
# =============================================================================
@dataclass(frozen=True, slots=True)
class GroupSnapshot:
    """One row of the groups table."""

    group_id: str
    label: str
    timezone: str
    version: int
    snapshot: str
    created_at: str
    updated_at: str

    @classmethod
    def from_state(cls, state: GroupState) -> GroupSnapshot:
        return cls(
            group_id=state.group_id,
            label=state.label,
            timezone=state.timezone,
            version=state.version,
            snapshot=state.to_json(),
            created_at=state.created_at,
            updated_at=state.updated_at,
        )

    def to_state(self) -> GroupState:
        """Rebuild the aggregate, e.g. for disaster recovery tooling."""
        from countdownmesh.group.models import GroupState

        return GroupState.from_dict(json.loads(self.snapshot))


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """One row of the events table."""

    event_id: str
    group_id: str
    session_id: str
    action: str
    payload: Optional[dict[str, Any]]
    occurred_at: str

    @classmethod
    def create(
        cls,
        group_id: str,
        session_id: str,
        action: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        return cls(
            event_id=new_event_id(),
            group_id=group_id,
            session_id=session_id,
            action=action,
            payload=copy.deepcopy(payload),
            occurred_at=Timestamp.now().to_iso(),
        )

    def payload_json(self) -> Optional[str]:
        if self.payload is None:
            return None
        return json.dumps(self.payload, separators=(",", ":"), default=str)


def _to_datetime(iso: str) -> datetime:
    return Timestamp.parse_iso(iso).unwrap_or(Timestamp.now()).to_datetime()


# =============================================================================
# PROTOCOL
# =============================================================================
@runtime_checkable
class SnapshotSink(Protocol):
    """Secondary replica. Implementations never raise for I/O failures."""

    @property
    def backend(self) -> str:
        ...

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        ...

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        ...

    async def close(self) -> None:
        ...


class NullSnapshotSink:
    """Sink used when no replica is configured."""

    backend = "none"

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        return Ok(None)

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        return Ok(None)

    async def close(self) -> None:
        return None


class InMemorySnapshotSink:
    """Keeps rows in dicts; mirrors the upsert rules of the SQL backends."""

    backend = "memory"

    def __init__(self) -> None:
        self.groups: dict[str, GroupSnapshot] = {}
        self.events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        async with self._lock:
            existing = self.groups.get(snapshot.group_id)
            if existing is None:
                self.groups[snapshot.group_id] = snapshot
            elif existing.version <= snapshot.version:
                self.groups[snapshot.group_id] = GroupSnapshot(
                    group_id=snapshot.group_id,
                    label=snapshot.label,
                    timezone=snapshot.timezone,
                    version=snapshot.version,
                    snapshot=snapshot.snapshot,
                    created_at=existing.created_at,
                    updated_at=snapshot.updated_at,
                )
        return Ok(None)

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        async with self._lock:
            self.events.append(event)
        return Ok(None)

    async def close(self) -> None:
        return None


# =============================================================================
# SQLITE
# =============================================================================
class SQLiteSnapshotSink:
    """
    SQLite replica.

    Usage:
        sink = SQLiteSnapshotSink(Path("./data/snapshots.db"))
        await sink.initialize()
    """

    backend = "sqlite"

    __slots__ = ("_db_path", "_conn", "_lock")

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    async def initialize(self) -> Result[None, StorageError]:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            SnapshotSchema.create_sqlite(self._conn)
            return Ok(None)

        except (sqlite3.Error, OSError) as e:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path), cause=e))

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        if self._conn is None:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))
        try:
            with self._lock:
                self._conn.execute(
                    SnapshotSchema.SQLITE_UPSERT_GROUP,
                    (
                        snapshot.group_id,
                        snapshot.label,
                        snapshot.timezone,
                        snapshot.version,
                        snapshot.snapshot,
                        snapshot.created_at,
                        snapshot.updated_at,
                    ),
                )
            return Ok(None)
        except sqlite3.Error as e:
            return Err(StorageError.sink_write_failed("sqlite", snapshot.group_id, cause=e))

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        if self._conn is None:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))
        try:
            with self._lock:
                self._conn.execute(
                    SnapshotSchema.SQLITE_INSERT_EVENT,
                    (
                        event.event_id,
                        event.group_id,
                        event.session_id,
                        event.action,
                        event.payload_json(),
                        event.occurred_at,
                    ),
                )
            return Ok(None)
        except sqlite3.Error as e:
            return Err(StorageError.audit_write_failed("sqlite", event.event_id, cause=e))

    async def get_group(self, group_id: str) -> Result[Optional[GroupSnapshot], StorageError]:
        if self._conn is None:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))
        try:
            row = self._conn.execute(
                "SELECT * FROM groups WHERE group_id = ?", (group_id,),
            ).fetchone()
        except sqlite3.Error as e:
            return Err(StorageError.read_failed("sqlite", group_id, cause=e))
        if row is None:
            return Ok(None)
        return Ok(GroupSnapshot(**dict(row)))

    async def list_events(
        self,
        group_id: str,
        session_id: Optional[str] = None,
    ) -> Result[list[AuditEvent], StorageError]:
        if self._conn is None:
            return Err(StorageError.connection_failed("sqlite", str(self._db_path)))

        sql = "SELECT * FROM events WHERE group_id = ?"
        params: tuple[Any, ...] = (group_id,)
        if session_id is not None:
            sql += " AND session_id = ?"
            params += (session_id,)
        sql += " ORDER BY occurred_at, rowid"

        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            return Err(StorageError.read_failed("sqlite", group_id, cause=e))

        return Ok([
            AuditEvent(
                event_id=row["event_id"],
                group_id=row["group_id"],
                session_id=row["session_id"],
                action=row["action"],
                payload=json.loads(row["payload"]) if row["payload"] else None,
                occurred_at=row["occurred_at"],
            )
            for row in rows
        ])

    async def close(self) -> None:
        if self._conn is not None:
            with self._lock:
                self._conn.close()
            self._conn = None


# =============================================================================
# POSTGRESQL
# =============================================================================
class PostgresSnapshotSink:
    """
    PostgreSQL replica on an asyncpg pool.

    Usage:
        result = await PostgresSnapshotSink.create(config.sink)
        if result.is_ok():
            sink = result.unwrap()
    """

    backend = "postgres"

    __slots__ = ("_config", "_pool", "_closed")

    def __init__(self, config: SnapshotSinkConfig, pool: Optional[Any] = None) -> None:
        self._config = config
        self._pool = pool
        self._closed = False

    @classmethod
    async def create(cls, config: SnapshotSinkConfig) -> Result[PostgresSnapshotSink, StorageError]:
        """Open the pool, verify connectivity and create the schema."""
        target = f"{config.host}:{config.port}/{config.database}"
        try:
            pool = await asyncpg.create_pool(
                host=config.host,
                port=config.port,
                database=config.database,
                user=config.user,
                password=config.password,
                min_size=config.pool_min,
                max_size=config.pool_max,
                command_timeout=config.command_timeout_ms / 1000,
            )
            async with pool.acquire() as conn:
                for statement in SnapshotSchema.postgres_statements():
                    await conn.execute(statement)

            logger.info(
                "Snapshot sink initialized",
                extra={
                    "backend": "postgres",
                    "target": target,
                    "pool_size": f"{config.pool_min}-{config.pool_max}",
                },
            )
            return Ok(cls(config, pool))

        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            return Err(StorageError.connection_failed("postgres", target, cause=e))

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        if self._pool is None or self._closed:
            return Err(StorageError.connection_failed("postgres", self._config.host))
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    SnapshotSchema.POSTGRES_UPSERT_GROUP,
                    snapshot.group_id,
                    snapshot.label,
                    snapshot.timezone,
                    snapshot.version,
                    snapshot.snapshot,
                    _to_datetime(snapshot.created_at),
                    _to_datetime(snapshot.updated_at),
                )
            return Ok(None)
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            return Err(StorageError.sink_write_failed("postgres", snapshot.group_id, cause=e))

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        if self._pool is None or self._closed:
            return Err(StorageError.connection_failed("postgres", self._config.host))
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    SnapshotSchema.POSTGRES_INSERT_EVENT,
                    event.event_id,
                    event.group_id,
                    event.session_id,
                    event.action,
                    event.payload_json(),
                    _to_datetime(event.occurred_at),
                )
            return Ok(None)
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            return Err(StorageError.audit_write_failed("postgres", event.event_id, cause=e))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pool is not None:
            await self._pool.close()
            logger.info("Snapshot sink closed", extra={"backend": "postgres"})
