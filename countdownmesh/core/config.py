"""
Configuration Management for the Countdown Mesh

Provides validated configuration with sensible defaults.
Supports environment variable overrides (COUNTDOWN_ prefix).

Design:
- Immutable after construction
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from countdownmesh.core import constants as C
from countdownmesh.core.types import Err, Ok, Result

DURABLE_BACKENDS = ("memory", "sqlite", "redis")
SINK_BACKENDS = ("none", "memory", "sqlite", "postgres")


@dataclass(frozen=True)
class DurableStoreConfig:
    """Authoritative per-group state storage."""

    backend: str = "sqlite"
    data_dir: Path = field(default_factory=lambda: Path("./data/durable"))
    compression_enabled: bool = True
    compression_threshold_bytes: int = C.COMPRESSION_THRESHOLD_BYTES
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "countdown"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "durable.db"


@dataclass(frozen=True)
class SnapshotSinkConfig:
    """Secondary relational replica and audit log."""

    backend: str = "sqlite"
    sqlite_path: Path = field(default_factory=lambda: Path("./data/snapshots.db"))
    host: str = "localhost"
    port: int = 5432
    database: str = "countdown"
    user: str = "countdown"
    password: str = ""
    pool_min: int = C.PG_POOL_MIN
    pool_max: int = C.PG_POOL_MAX
    command_timeout_ms: int = C.PG_COMMAND_TIMEOUT_MS

    @property
    def dsn(self) -> str:
        """PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}"
        )


@dataclass(frozen=True)
class CoordinatorConfig:
    """Defaults applied when a group is first materialized."""

    default_label: str = C.DEFAULT_GROUP_LABEL
    default_timezone: str = C.DEFAULT_TIMEZONE
    state_key: str = C.STATE_SLOT_KEY


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class CountdownConfig:
    """Root configuration for the countdown mesh."""

    durable: DurableStoreConfig = field(default_factory=DurableStoreConfig)
    sink: SnapshotSinkConfig = field(default_factory=SnapshotSinkConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def for_testing(cls, data_dir: Optional[Path] = None) -> CountdownConfig:
        """In-memory durable store and sink unless a directory is given."""
        if data_dir is None:
            return cls(
                durable=DurableStoreConfig(backend="memory"),
                sink=SnapshotSinkConfig(backend="memory"),
                observability=ObservabilityConfig(log_level="DEBUG", log_json=False),
            )
        return cls(
            durable=DurableStoreConfig(backend="sqlite", data_dir=data_dir),
            sink=SnapshotSinkConfig(
                backend="sqlite",
                sqlite_path=data_dir / "snapshots.db",
            ),
            observability=ObservabilityConfig(log_level="DEBUG", log_json=False),
        )

    @classmethod
    def from_env(cls) -> Result[CountdownConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with COUNTDOWN_.
        Example: COUNTDOWN_DURABLE_BACKEND, COUNTDOWN_PG_HOST
        """
        try:
            durable = DurableStoreConfig(
                backend=os.getenv("COUNTDOWN_DURABLE_BACKEND", "sqlite"),
                data_dir=Path(os.getenv("COUNTDOWN_DURABLE_DIR", "./data/durable")),
                compression_enabled=_env_bool("COUNTDOWN_DURABLE_COMPRESSION", True),
                redis_url=os.getenv("COUNTDOWN_REDIS_URL", "redis://localhost:6379/0"),
            )

            sink = SnapshotSinkConfig(
                backend=os.getenv("COUNTDOWN_SINK_BACKEND", "sqlite"),
                sqlite_path=Path(
                    os.getenv("COUNTDOWN_SINK_SQLITE_PATH", "./data/snapshots.db")
                ),
                host=os.getenv("COUNTDOWN_PG_HOST", "localhost"),
                port=int(os.getenv("COUNTDOWN_PG_PORT", "5432")),
                database=os.getenv("COUNTDOWN_PG_DATABASE", "countdown"),
                user=os.getenv("COUNTDOWN_PG_USER", "countdown"),
                password=os.getenv("COUNTDOWN_PG_PASSWORD", ""),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("COUNTDOWN_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("COUNTDOWN_LOG_JSON", True),
            )

            return Ok(cls(durable=durable, sink=sink, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if self.durable.backend not in DURABLE_BACKENDS:
            return Err(f"Unknown durable backend: {self.durable.backend}")
        if self.sink.backend not in SINK_BACKENDS:
            return Err(f"Unknown snapshot sink backend: {self.sink.backend}")
        if self.durable.compression_threshold_bytes < 0:
            return Err("Compression threshold cannot be negative")
        if self.sink.pool_min > self.sink.pool_max:
            return Err("Sink pool_min cannot exceed pool_max")
        if not self.coordinator.state_key:
            return Err("Coordinator state_key cannot be empty")
        if self.observability.log_level not in {
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL",
        }:
            return Err(f"Unknown log level: {self.observability.log_level}")
        return Ok(None)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
