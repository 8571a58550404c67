"""
Storage module: durable state slots and the snapshot sink.

Factories build and initialize the backend named in configuration.
"""

from __future__ import annotations

from countdownmesh.core.config import DurableStoreConfig, SnapshotSinkConfig
from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, Ok, Result
from countdownmesh.storage.durable import (
    DurableStore,
    InMemoryDurableStore,
    SQLiteDurableStore,
)
from countdownmesh.storage.redis_store import RedisDurableStore
from countdownmesh.storage.schema import SnapshotSchema
from countdownmesh.storage.snapshot import (
    AuditEvent,
    GroupSnapshot,
    InMemorySnapshotSink,
    NullSnapshotSink,
    PostgresSnapshotSink,
    SnapshotSink,
    SQLiteSnapshotSink,
)


async def create_durable_store(config: DurableStoreConfig) -> Result[DurableStore, StorageError]:
    """Build and connect the configured durable backend."""
    if config.backend == "memory":
        return Ok(InMemoryDurableStore())

    if config.backend == "sqlite":
        store = SQLiteDurableStore(config.db_path)
        result = await store.initialize()
        return result.map(lambda _: store)

    if config.backend == "redis":
        redis_store = RedisDurableStore(config.redis_url, config.redis_key_prefix)
        result = await redis_store.connect()
        return result.map(lambda _: redis_store)

    return Err(StorageError.connection_failed(config.backend, "unknown durable backend"))


async def create_snapshot_sink(config: SnapshotSinkConfig) -> Result[SnapshotSink, StorageError]:
    """Build and connect the configured snapshot sink."""
    if config.backend == "none":
        return Ok(NullSnapshotSink())

    if config.backend == "memory":
        return Ok(InMemorySnapshotSink())

    if config.backend == "sqlite":
        sink = SQLiteSnapshotSink(config.sqlite_path)
        result = await sink.initialize()
        return result.map(lambda _: sink)

    if config.backend == "postgres":
        return await PostgresSnapshotSink.create(config)

    return Err(StorageError.connection_failed(config.backend, "unknown snapshot sink backend"))


__all__ = [
    "DurableStore",
    "InMemoryDurableStore",
    "SQLiteDurableStore",
    "RedisDurableStore",
    "SnapshotSchema",
    "SnapshotSink",
    "GroupSnapshot",
    "AuditEvent",
    "NullSnapshotSink",
    "InMemorySnapshotSink",
    "SQLiteSnapshotSink",
    "PostgresSnapshotSink",
    "create_durable_store",
    "create_snapshot_sink",
]
