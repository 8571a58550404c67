"""
Coordinator Registry: One Actor per Group

Maps a group's shard key to its GroupCoordinator. Creation happens under
a registry lock, so concurrent first requests for the same group always
receive the same coordinator. Coordinators for different groups share
the durable store, the sink and the metrics set but nothing else.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Union

from countdownmesh.api.router import Request, Response
from countdownmesh.core.config import CountdownConfig
from countdownmesh.core.types import GroupId
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.observability.logging import StructuredLogger
from countdownmesh.observability.metrics import CoordinatorMetrics
from countdownmesh.storage.durable import DurableStore
from countdownmesh.storage.snapshot import NullSnapshotSink, SnapshotSink

logger = StructuredLogger(__name__)


class CoordinatorRegistry:
    """
    In-process group id -> coordinator map.

    Usage:
        registry = CoordinatorRegistry(store, sink, config)
        coordinator = await registry.get(GroupId("finals"))
        response = await registry.fetch("finals", request)
    """

    __slots__ = ("_store", "_sink", "_config", "_metrics", "_coordinators", "_lock")

    def __init__(
        self,
        durable_store: DurableStore,
        snapshot_sink: Optional[SnapshotSink] = None,
        config: Optional[CountdownConfig] = None,
        metrics: Optional[CoordinatorMetrics] = None,
    ) -> None:
        self._store = durable_store
        self._sink: SnapshotSink = snapshot_sink or NullSnapshotSink()
        self._config = config or CountdownConfig()
        self._metrics = metrics or CoordinatorMetrics()
        self._coordinators: dict[str, GroupCoordinator] = {}
        self._lock = asyncio.Lock()

    async def get(self, group_id: Union[GroupId, str]) -> GroupCoordinator:
        """Return the coordinator for group_id, creating it on first use."""
        gid = group_id if isinstance(group_id, GroupId) else GroupId(group_id)
        key = gid.shard_key

        coordinator = self._coordinators.get(key)
        if coordinator is not None:
            return coordinator

        async with self._lock:
            coordinator = self._coordinators.get(key)
            if coordinator is None:
                coordinator = GroupCoordinator(
                    gid,
                    self._store,
                    self._sink,
                    config=self._config,
                    metrics=self._metrics,
                )
                self._coordinators[key] = coordinator
                logger.debug("Coordinator created", group_id=gid.value, shard_key=key[:12])
            return coordinator

    async def fetch(self, group_id: Union[GroupId, str], request: Request) -> Response:
        coordinator = await self.get(group_id)
        return await coordinator.fetch(request)

    def group_ids(self) -> list[str]:
        return sorted(c.group_id.value for c in self._coordinators.values())

    @property
    def metrics(self) -> CoordinatorMetrics:
        return self._metrics

    def __len__(self) -> int:
        return len(self._coordinators)

    def __contains__(self, group_id: object) -> bool:
        if isinstance(group_id, str):
            group_id = GroupId(group_id)
        if not isinstance(group_id, GroupId):
            return False
        return group_id.shard_key in self._coordinators
