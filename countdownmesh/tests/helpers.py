"""
Sample payloads, failure-injecting doubles and builders shared by the test modules.
"""

from __future__ import annotations

from typing import Optional

from countdownmesh.core.config import CountdownConfig
from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, GroupId, Result
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.storage.durable import InMemoryDurableStore
from countdownmesh.storage.snapshot import AuditEvent, GroupSnapshot

QUALIFIER = {
    "label": "Qualifier",
    "start_time_utc": "2025-01-01T10:00:00Z",
    "duration_ms": 3_600_000,
}


# =============================================================================
# TEST DOUBLES
# =============================================================================
class CountingDurableStore(InMemoryDurableStore):
    """In-memory store that counts writes and can be told to fail them."""

    __slots__ = ("puts", "fail_puts")

    def __init__(self) -> None:
        super().__init__()
        self.puts = 0
        self.fail_puts = False

    async def put(self, namespace: str, key: str, value: bytes) -> Result[None, StorageError]:
        self.puts += 1
        if self.fail_puts:
            return Err(StorageError.write_failed("test", f"{namespace}/{key}"))
        return await super().put(namespace, key, value)


class BrokenSnapshotSink:
    """Upserts return Err, audit inserts raise."""

    backend = "broken"

    def __init__(self) -> None:
        self.upsert_attempts = 0
        self.append_attempts = 0

    async def upsert_group(self, snapshot: GroupSnapshot) -> Result[None, StorageError]:
        self.upsert_attempts += 1
        return Err(StorageError.sink_write_failed("broken", snapshot.group_id))

    async def append_event(self, event: AuditEvent) -> Result[None, StorageError]:
        self.append_attempts += 1
        raise ConnectionError("replica unreachable")

    async def close(self) -> None:
        return None


# =============================================================================
# BUILDERS
# =============================================================================
def make_coordinator(
    store: Optional[InMemoryDurableStore] = None,
    sink: Optional[object] = None,
    group: str = "finals",
) -> GroupCoordinator:
    return GroupCoordinator(
        GroupId(group),
        store if store is not None else InMemoryDurableStore(),
        sink,
        config=CountdownConfig.for_testing(),
    )
