#!/usr/bin/env python3
"""
Countdown Mesh

Main entry point demonstrating a full request flow through the gateway
against the configured durable store and snapshot sink.

Usage:
    python -m countdownmesh

    # Or with in-memory backends
    COUNTDOWN_DURABLE_BACKEND=memory COUNTDOWN_SINK_BACKEND=memory python -m countdownmesh
"""

from __future__ import annotations

import asyncio
import sys

from countdownmesh.api.gateway import Gateway
from countdownmesh.api.router import Request
from countdownmesh.core.config import CountdownConfig
from countdownmesh.group.registry import CoordinatorRegistry
from countdownmesh.observability.logging import LogLevel, setup_logging
from countdownmesh.storage import create_durable_store, create_snapshot_sink


async def demo() -> None:
    """Create a group, schedule a session, move and rename it, then delete it."""
    print("\n" + "=" * 60)
    print("Countdown Mesh - Local Demo")
    print("=" * 60 + "\n")

    config_result = CountdownConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)

    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    setup_logging(
        LogLevel.from_name(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    print("✓ Configuration loaded and validated")
    print(f"  Durable store: {config.durable.backend}")
    print(f"  Snapshot sink: {config.sink.backend}")

    store_result = await create_durable_store(config.durable)
    if store_result.is_err():
        print(f"Durable store error: {store_result.error}")
        sys.exit(1)
    store = store_result.unwrap()

    sink_result = await create_snapshot_sink(config.sink)
    if sink_result.is_err():
        print(f"Snapshot sink error: {sink_result.error}")
        await store.close()
        sys.exit(1)
    sink = sink_result.unwrap()

    registry = CoordinatorRegistry(store, sink, config)
    gateway = Gateway(registry)

    print("\n--- Demo Operations ---\n")

    created = await gateway.handle(
        Request.build("POST", "/api/groups", {"label": "Finals", "timezone": "Europe/Berlin"}),
    )
    state = created.data()
    group_id = state["groupId"]
    base = f"/api/groups/{group_id}"
    print(f"1. Group created: {group_id} (version {state['version']})")

    response = await gateway.handle(Request.build("POST", f"{base}/sessions", {
        "label": "Qualifier",
        "startTimeUtc": "2025-01-01T10:00:00Z",
        "durationMs": 3_600_000,
    }))
    body = response.data()
    session_id = body["session"]["sessionId"]
    print(f"2. Session created: {session_id[:8]}... (version {body['state']['version']})")

    response = await gateway.handle(Request.build("PATCH", f"{base}/sessions/{session_id}", {
        "label": "Qualifier A",
        "metadata": {"lane": 1},
    }))
    body = response.data()
    print(f"3. Session updated: {body['session']['label']} (version {body['state']['version']})")

    response = await gateway.handle(Request.build("DELETE", f"{base}/sessions/{session_id}"))
    print(f"4. Session deleted: {response.data()['deleted'][:8]}...")

    response = await gateway.handle(Request.build("GET", base))
    final = response.data()
    print(f"5. Final state: version {final['version']}, {len(final['sessions'])} sessions")

    print(f"\n6. Metrics: {registry.metrics.snapshot()}")

    await sink.close()
    await store.close()

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo()
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
