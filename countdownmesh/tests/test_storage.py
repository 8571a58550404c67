"""
Storage Test Suite: Durable Backends and the Snapshot Sink

Run: python -m pytest countdownmesh/tests/test_storage.py -v
"""

from __future__ import annotations

from typing import Any, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from countdownmesh.core.config import CountdownConfig, DurableStoreConfig, SnapshotSinkConfig
from countdownmesh.core.errors import ErrorCode
from countdownmesh.core.types import GroupId
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.group.models import GroupState
from countdownmesh.storage import (
    InMemoryDurableStore,
    InMemorySnapshotSink,
    NullSnapshotSink,
    RedisDurableStore,
    SQLiteDurableStore,
    SQLiteSnapshotSink,
    create_durable_store,
    create_snapshot_sink,
)
from countdownmesh.storage.snapshot import AuditEvent, GroupSnapshot
from countdownmesh.tests.helpers import QUALIFIER


class FakeRedis:
    """Minimal async stand-in for redis.asyncio.Redis hash commands."""

    def __init__(self, fail: bool = False) -> None:
        self.hashes: dict[str, dict[str, Any]] = {}
        self.fail = fail
        self.closed = False

    async def ping(self) -> bool:
        if self.fail:
            raise RedisConnectionError("connection refused")
        return True

    async def hget(self, key: str, field: str) -> Optional[bytes]:
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# DURABLE STORES
# =============================================================================
class TestInMemoryDurableStore:

    async def test_missing_slot_is_none(self):
        store = InMemoryDurableStore()
        assert (await store.get("ns", "group")).unwrap() is None

    async def test_put_then_get(self):
        store = InMemoryDurableStore()
        await store.put("ns", "group", b"\x00{}")
        assert (await store.get("ns", "group")).unwrap() == b"\x00{}"
        assert (await store.get("other", "group")).unwrap() is None


class TestSQLiteDurableStore:

    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "durable.db"
        store = SQLiteDurableStore(path)
        assert (await store.initialize()).is_ok()
        await store.put("ns", "group", b"first")
        await store.put("ns", "group", b"second")
        await store.close()

        reopened = SQLiteDurableStore(path)
        await reopened.initialize()
        assert (await reopened.get("ns", "group")).unwrap() == b"second"
        await reopened.close()

    async def test_uninitialized_store_errors(self, tmp_path):
        store = SQLiteDurableStore(tmp_path / "never.db")
        result = await store.put("ns", "group", b"x")
        assert result.error.code == ErrorCode.STORAGE_CONNECTION_FAILED

    async def test_coordinator_restart_recovery(self, tmp_path):
        config = CountdownConfig.for_testing(tmp_path)
        store = (await create_durable_store(config.durable)).unwrap()

        coordinator = GroupCoordinator(GroupId("finals"), store, config=config)
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        await coordinator.update_session(session.session_id, {"label": "Qualifier A"})
        await store.close()

        store = (await create_durable_store(config.durable)).unwrap()
        restarted = GroupCoordinator(GroupId("finals"), store, config=config)
        state = (await restarted.get_state()).unwrap()
        assert state.version == 2
        assert [s.label for s in state.sessions] == ["Qualifier A"]
        await store.close()


class TestRedisDurableStore:

    async def test_round_trip_with_prefixed_key(self):
        fake = FakeRedis()
        store = RedisDurableStore("redis://test", key_prefix="cd", client=fake)
        assert (await store.connect()).is_ok()

        await store.put("abc", "group", b"\x00{}")
        assert fake.hashes["cd:abc:group"]["d"] == b"\x00{}"
        assert (await store.get("abc", "group")).unwrap() == b"\x00{}"
        assert (await store.get("abc", "other")).unwrap() is None
        assert store.stats.put_count == 1

        await store.close()
        assert fake.closed

    async def test_connection_failure(self):
        store = RedisDurableStore("redis://test", client=FakeRedis(fail=True))
        result = await store.connect()
        assert result.error.code == ErrorCode.STORAGE_CONNECTION_FAILED

    async def test_write_failure_is_err(self):
        fake = FakeRedis()
        store = RedisDurableStore("redis://test", client=fake)
        await store.connect()
        fake.fail = True
        result = await store.put("abc", "group", b"x")
        assert result.error.code == ErrorCode.STORAGE_WRITE_FAILED


# =============================================================================
# SNAPSHOT SINKS
# =============================================================================
def _snapshot(version: int, label: str = "Finals", created: str = "2025-01-01T00:00:00.000Z") -> GroupSnapshot:
    state = GroupState.fallback("finals", label=label)
    state.version = version
    state.created_at = created
    return GroupSnapshot.from_state(state)


class TestInMemorySnapshotSink:

    async def test_upsert_keeps_created_at_and_ignores_stale(self):
        sink = InMemorySnapshotSink()
        await sink.upsert_group(_snapshot(1, created="2025-01-01T00:00:00.000Z"))
        await sink.upsert_group(_snapshot(3, label="Renamed", created="2030-01-01T00:00:00.000Z"))
        await sink.upsert_group(_snapshot(2, label="Stale"))

        row = sink.groups["finals"]
        assert row.version == 3
        assert row.label == "Renamed"
        assert row.created_at == "2025-01-01T00:00:00.000Z"


class TestSQLiteSnapshotSink:

    @pytest.fixture
    async def sink(self, tmp_path):
        sink = SQLiteSnapshotSink(tmp_path / "snapshots.db")
        assert (await sink.initialize()).is_ok()
        yield sink
        await sink.close()

    async def test_group_rows(self, sink):
        await sink.upsert_group(_snapshot(1))
        await sink.upsert_group(_snapshot(2, label="Renamed", created="2030-01-01T00:00:00.000Z"))
        await sink.upsert_group(_snapshot(1, label="Stale"))

        row = (await sink.get_group("finals")).unwrap()
        assert row.version == 2
        assert row.label == "Renamed"
        assert row.created_at == "2025-01-01T00:00:00.000Z"
        assert row.to_state().label == "Renamed"
        assert (await sink.get_group("missing")).unwrap() is None

    async def test_event_rows(self, sink):
        created = AuditEvent.create("finals", "s1", "session.created", {"label": "Qualifier"})
        await sink.append_event(created)
        await sink.append_event(AuditEvent.create("finals", "s2", "session.deleted"))
        await sink.append_event(AuditEvent.create("heats", "s3", "session.created"))

        events = (await sink.list_events("finals")).unwrap()
        assert [e.session_id for e in events] == ["s1", "s2"]
        assert events[0].payload == {"label": "Qualifier"}
        assert events[1].payload is None

        only_s1 = (await sink.list_events("finals", session_id="s1")).unwrap()
        assert [e.event_id for e in only_s1] == [created.event_id]

    async def test_duplicate_event_id_is_err(self, sink):
        event = AuditEvent.create("finals", "s1", "session.created")
        assert (await sink.append_event(event)).is_ok()
        result = await sink.append_event(event)
        assert result.error.code == ErrorCode.STORAGE_AUDIT_WRITE_FAILED

    async def test_coordinator_writes_through(self, sink):
        coordinator = GroupCoordinator(GroupId("finals"), InMemoryDurableStore(), sink)
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        await coordinator.delete_session(session.session_id)

        row = (await sink.get_group("finals")).unwrap()
        assert row.version == 2
        actions = [e.action for e in (await sink.list_events("finals", session.session_id)).unwrap()]
        assert actions == ["session.created", "session.deleted"]


# =============================================================================
# FACTORIES
# =============================================================================
class TestFactories:

    async def test_memory_backends(self):
        assert isinstance((await create_durable_store(DurableStoreConfig(backend="memory"))).unwrap(), InMemoryDurableStore)
        assert isinstance((await create_snapshot_sink(SnapshotSinkConfig(backend="memory"))).unwrap(), InMemorySnapshotSink)
        assert isinstance((await create_snapshot_sink(SnapshotSinkConfig(backend="none"))).unwrap(), NullSnapshotSink)

    async def test_sqlite_backends(self, tmp_path):
        config = CountdownConfig.for_testing(tmp_path)
        store = (await create_durable_store(config.durable)).unwrap()
        sink = (await create_snapshot_sink(config.sink)).unwrap()
        assert isinstance(store, SQLiteDurableStore)
        assert isinstance(sink, SQLiteSnapshotSink)
        assert (tmp_path / "durable.db").exists()
        assert (tmp_path / "snapshots.db").exists()
        await sink.close()
        await store.close()

    async def test_unknown_backend(self):
        result = await create_durable_store(DurableStoreConfig(backend="tape"))
        assert result.is_err()
