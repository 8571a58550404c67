"""
Shared fixtures for the countdown mesh tests.
"""

from __future__ import annotations

import pytest

from countdownmesh.core.config import CountdownConfig
from countdownmesh.core.types import GroupId
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.observability.metrics import CoordinatorMetrics
from countdownmesh.storage.snapshot import InMemorySnapshotSink
from countdownmesh.tests.helpers import CountingDurableStore


@pytest.fixture
def config() -> CountdownConfig:
    return CountdownConfig.for_testing()


@pytest.fixture
def store() -> CountingDurableStore:
    return CountingDurableStore()


@pytest.fixture
def sink() -> InMemorySnapshotSink:
    return InMemorySnapshotSink()


@pytest.fixture
def metrics() -> CoordinatorMetrics:
    return CoordinatorMetrics()


@pytest.fixture
def group_id() -> GroupId:
    return GroupId("finals")


@pytest.fixture
def coordinator(
    group_id: GroupId,
    store: CountingDurableStore,
    sink: InMemorySnapshotSink,
    config: CountdownConfig,
    metrics: CoordinatorMetrics,
) -> GroupCoordinator:
    return GroupCoordinator(group_id, store, sink, config=config, metrics=metrics)
