"""
Group Coordinator Test Suite

Covers:
- Ordering, identity and version invariants across mutations
- Validation and lookup failures leave no trace
- Durable write failure leaves the cache untouched
- Snapshot and audit failures never fail a committed mutation
- Optimistic concurrency and serialized concurrent writers
- The Qualifier scenario end to end
"""

from __future__ import annotations

import asyncio

from countdownmesh.core import constants as C
from countdownmesh.core.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    StorageError,
    ValidationError,
)
from countdownmesh.core.types import GroupId
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.group.models import GroupState, SessionStatus
from countdownmesh.storage.durable import InMemoryDurableStore
from countdownmesh.tests.helpers import QUALIFIER, BrokenSnapshotSink, make_coordinator


async def _version(coordinator: GroupCoordinator) -> int:
    return (await coordinator.get_state()).unwrap().version


class TestLifecycle:
    """First load materializes defaults without writing."""

    async def test_fresh_group_is_fallback_state(self, coordinator, store):
        state = (await coordinator.get_state()).unwrap()
        assert state.group_id == "finals"
        assert state.label == "Untitled Group"
        assert state.timezone == "UTC"
        assert state.version == 0
        assert state.sessions == []
        assert store.puts == 0
        assert coordinator.is_active

    async def test_reads_do_not_change_version(self, coordinator, store):
        await coordinator.create_session(**QUALIFIER)
        before = store.puts
        await coordinator.get_state()
        await coordinator.list_sessions()
        assert await _version(coordinator) == 1
        assert store.puts == before

    async def test_returned_state_is_a_copy(self, coordinator):
        session, state = (await coordinator.create_session(**QUALIFIER)).unwrap()
        state.sessions.clear()
        session.label = "tampered"
        fresh = (await coordinator.list_sessions()).unwrap()
        assert [s.label for s in fresh] == ["Qualifier"]


class TestBootstrap:
    """Tests for group-level label and timezone."""

    async def test_sets_label_and_timezone(self, coordinator, sink):
        state = (await coordinator.bootstrap("Finals", "Europe/Berlin")).unwrap()
        assert (state.label, state.timezone, state.version) == ("Finals", "Europe/Berlin", 1)
        assert sink.groups["finals"].version == 1
        assert sink.events == []

    async def test_omitted_timezone_is_kept(self, coordinator):
        await coordinator.bootstrap("Finals", "Asia/Tokyo")
        state = (await coordinator.bootstrap("Finals Day 2")).unwrap()
        assert state.timezone == "Asia/Tokyo"
        assert state.version == 2

    async def test_label_required(self, coordinator, store):
        result = await coordinator.bootstrap("")
        assert isinstance(result.error, ValidationError)
        assert store.puts == 0

    async def test_group_id_is_immutable(self, coordinator):
        assert (await coordinator.bootstrap("Finals", group_id="finals")).is_ok()
        result = await coordinator.bootstrap("Finals", group_id="heats")
        assert result.error.code == ErrorCode.VALIDATION_IMMUTABLE_FIELD
        assert await _version(coordinator) == 1


class TestCreateSession:
    """Tests for session creation."""

    async def test_mints_id_and_defaults(self, coordinator):
        session, state = (await coordinator.create_session(**QUALIFIER, metadata={"lane": 1})).unwrap()
        assert session.session_id
        assert session.status is SessionStatus.SCHEDULED
        assert session.metadata == {"lane": 1}
        assert session.start_time_utc == "2025-01-01T10:00:00Z"
        assert state.sessions == [session]

    async def test_sessions_sorted_and_ids_distinct(self, coordinator):
        starts = [
            "2025-01-01T15:00:00Z",
            "2025-01-01T09:00:00Z",
            "2025-01-01T12:00:00+01:00",
            "2025-01-01T09:00:00Z",
        ]
        for i, start in enumerate(starts):
            await coordinator.create_session(f"s{i}", start, 60_000)

        sessions = (await coordinator.list_sessions()).unwrap()
        instants = [s.start_instant for s in sessions]
        assert instants == sorted(instants)
        assert [s.label for s in sessions] == ["s1", "s3", "s2", "s0"]
        assert len({s.session_id for s in sessions}) == 4
        assert await _version(coordinator) == 4

    async def test_missing_duration_writes_nothing(self, coordinator, store, sink):
        result = await coordinator.create_session("Qualifier", "2025-01-01T10:00:00Z", None)
        assert isinstance(result.error, ValidationError)
        assert result.error.message == "durationMs is required"
        assert store.puts == 0
        assert sink.groups == {}
        assert sink.events == []
        assert await _version(coordinator) == 0

    async def test_audit_carries_full_session(self, coordinator, sink):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        [event] = sink.events
        assert event.action == C.ACTION_SESSION_CREATED
        assert event.group_id == "finals"
        assert event.session_id == session.session_id
        assert event.payload == session.to_dict()


class TestUpdateSession:
    """Tests for partial updates."""

    async def test_metadata_merges(self, coordinator):
        session, _ = (await coordinator.create_session(**QUALIFIER, metadata={"a": 1})).unwrap()
        updated, state = (await coordinator.update_session(session.session_id, {"metadata": {"b": 2}})).unwrap()
        assert updated.metadata == {"a": 1, "b": 2}
        assert state.version == 2

    async def test_caller_metadata_is_not_shared(self, coordinator, sink):
        created_meta = {"lane": {"n": 1}}
        session, _ = (await coordinator.create_session(**QUALIFIER, metadata=created_meta)).unwrap()
        created_meta["lane"]["n"] = 99

        changes = {"metadata": {"car": {"no": 7}}}
        await coordinator.update_session(session.session_id, changes)
        changes["metadata"]["car"]["no"] = 44

        state = (await coordinator.get_state()).unwrap()
        assert state.version == 2
        assert state.sessions[0].metadata == {"lane": {"n": 1}, "car": {"no": 7}}
        assert sink.events[0].payload["metadata"] == {"lane": {"n": 1}}
        assert sink.events[1].payload == {"metadata": {"car": {"no": 7}}}

    async def test_falsy_values_do_not_overwrite(self, coordinator):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        updated, state = (await coordinator.update_session(
            session.session_id, {"label": "", "durationMs": 0},
        )).unwrap()
        assert updated.label == "Qualifier"
        assert updated.duration_ms == 3_600_000
        assert state.version == 2

    async def test_session_id_cannot_be_changed(self, coordinator):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        updated, _ = (await coordinator.update_session(
            session.session_id, {"sessionId": "hijack", "status": "running"},
        )).unwrap()
        assert updated.session_id == session.session_id
        assert updated.status is SessionStatus.RUNNING

    async def test_moving_start_resorts(self, coordinator):
        first, _ = (await coordinator.create_session("A", "2025-01-01T09:00:00Z", 1000)).unwrap()
        await coordinator.create_session("B", "2025-01-01T10:00:00Z", 1000)
        _, state = (await coordinator.update_session(
            first.session_id, {"startTimeUtc": "2025-01-01T11:00:00Z"},
        )).unwrap()
        assert [s.label for s in state.sessions] == ["B", "A"]

    async def test_unknown_session(self, coordinator, store):
        result = await coordinator.update_session("nope", {"label": "x"})
        assert isinstance(result.error, NotFoundError)
        assert result.error.message == "Session not found"
        assert store.puts == 0

    async def test_invalid_status_rejected(self, coordinator):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        result = await coordinator.update_session(session.session_id, {"status": "paused"})
        assert isinstance(result.error, ValidationError)
        assert await _version(coordinator) == 1

    async def test_audit_carries_raw_partial_payload(self, coordinator, sink):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        await coordinator.update_session(session.session_id, {"label": "Qualifier A", "extra": True})
        assert sink.events[-1].action == C.ACTION_SESSION_UPDATED
        assert sink.events[-1].payload == {"label": "Qualifier A", "extra": True}


class TestDeleteSession:
    """Tests for deletion."""

    async def test_deletes_and_audits_prior_session(self, coordinator, sink):
        session, _ = (await coordinator.create_session(**QUALIFIER)).unwrap()
        assert (await coordinator.delete_session(session.session_id)).unwrap() == session.session_id
        assert (await coordinator.list_sessions()).unwrap() == []
        assert sink.events[-1].action == C.ACTION_SESSION_DELETED
        assert sink.events[-1].payload["label"] == "Qualifier"

    async def test_unknown_id_changes_nothing(self, coordinator):
        await coordinator.create_session(**QUALIFIER)
        result = await coordinator.delete_session("does-not-exist")
        assert isinstance(result.error, NotFoundError)
        assert await _version(coordinator) == 1
        assert len((await coordinator.list_sessions()).unwrap()) == 1


class TestPersistence:
    """Durable store interaction."""

    async def test_state_survives_new_coordinator(self, store):
        first = make_coordinator(store)
        await first.bootstrap("Finals", "Europe/Paris")
        await first.create_session(**QUALIFIER)

        second = make_coordinator(store)
        state = (await second.get_state()).unwrap()
        assert state.label == "Finals"
        assert state.version == 2
        assert [s.label for s in state.sessions] == ["Qualifier"]

    async def test_blob_lives_under_shard_key(self, coordinator, store):
        await coordinator.create_session(**QUALIFIER)
        blob = (await store.get(GroupId("finals").shard_key, C.STATE_SLOT_KEY)).unwrap()
        assert GroupState.from_bytes(blob).unwrap().version == 1

    async def test_failed_write_leaves_cache_untouched(self, coordinator, store, sink):
        await coordinator.create_session(**QUALIFIER)
        store.fail_puts = True

        result = await coordinator.create_session("Final", "2025-01-01T12:00:00Z", 60_000)
        assert isinstance(result.error, StorageError)
        assert result.error.http_status == 500

        store.fail_puts = False
        state = (await coordinator.get_state()).unwrap()
        assert state.version == 1
        assert [s.label for s in state.sessions] == ["Qualifier"]
        assert len(sink.events) == 1

    async def test_unreadable_blob_is_reported(self, store):
        await store.put(GroupId("finals").shard_key, C.STATE_SLOT_KEY, b"\x09garbage")
        result = await make_coordinator(store).get_state()
        assert result.error.code == ErrorCode.STORAGE_CORRUPTION


class TestSinkFailures:
    """Snapshot and audit writes are best effort."""

    async def test_broken_sink_does_not_fail_mutation(self, metrics):
        sink = BrokenSnapshotSink()
        coordinator = GroupCoordinator(GroupId("finals"), InMemoryDurableStore(), sink, metrics=metrics)

        session, state = (await coordinator.create_session(**QUALIFIER)).unwrap()
        assert state.version == 1
        assert sink.upsert_attempts == 1
        assert sink.append_attempts == 1
        assert metrics.sink_failures.get(sink="snapshot") == 1
        assert metrics.sink_failures.get(sink="audit") == 1
        assert metrics.commits.get(action=C.ACTION_SESSION_CREATED) == 1

        deleted = await coordinator.delete_session(session.session_id)
        assert deleted.is_ok()
        assert await _version(coordinator) == 2


class TestConcurrency:
    """Single-writer guarantees."""

    async def test_expected_version_conflict(self, coordinator, store):
        await coordinator.create_session(**QUALIFIER)
        result = await coordinator.create_session("Final", "2025-01-01T12:00:00Z", 1000, expected_version=0)
        assert isinstance(result.error, ConflictError)
        assert result.error.http_status == 409
        assert store.puts == 1

        ok = await coordinator.create_session("Final", "2025-01-01T12:00:00Z", 1000, expected_version=1)
        assert ok.unwrap()[1].version == 2

    async def test_concurrent_creates_serialize(self, coordinator):
        results = await asyncio.gather(*(
            coordinator.create_session(f"s{i}", f"2025-01-01T{10 + i:02d}:00:00Z", 1000)
            for i in range(10)
        ))
        versions = sorted(r.unwrap()[1].version for r in results)
        assert versions == list(range(1, 11))

        sessions = (await coordinator.list_sessions()).unwrap()
        assert len({s.session_id for s in sessions}) == 10
        assert await _version(coordinator) == 10


class TestQualifierScenario:
    """Create, move earlier and delete one session."""

    async def test_versions_one_two_three(self, coordinator, sink):
        session, state = (await coordinator.create_session(
            "Qualifier", "2026-01-01T17:00:00.000Z", 3_600_000,
        )).unwrap()
        assert session.session_id
        assert state.version == 1
        assert session.status is SessionStatus.SCHEDULED

        updated, state = (await coordinator.update_session(
            session.session_id, {"startTimeUtc": "2026-01-01T12:00:00.000Z"},
        )).unwrap()
        assert updated.start_time_utc == "2026-01-01T12:00:00.000Z"
        assert updated.label == "Qualifier"
        assert state.version == 2

        assert (await coordinator.delete_session(session.session_id)).unwrap() == session.session_id
        final = (await coordinator.get_state()).unwrap()
        assert final.version == 3
        assert final.sessions == []

        assert [e.action for e in sink.events] == [
            C.ACTION_SESSION_CREATED,
            C.ACTION_SESSION_UPDATED,
            C.ACTION_SESSION_DELETED,
        ]
        assert sink.groups["finals"].version == 3

    async def test_moved_session_sorts_before_later_start(self, coordinator):
        qualifier, _ = (await coordinator.create_session(
            "Qualifier", "2026-01-01T17:00:00.000Z", 3_600_000,
        )).unwrap()
        await coordinator.create_session("Later", "2026-01-01T14:00:00.000Z", 3_600_000)
        assert [s.label for s in (await coordinator.list_sessions()).unwrap()] == ["Later", "Qualifier"]

        _, state = (await coordinator.update_session(
            qualifier.session_id, {"startTimeUtc": "2026-01-01T12:00:00.000Z"},
        )).unwrap()
        assert [s.label for s in state.sessions] == ["Qualifier", "Later"]
        assert state.version == 3
