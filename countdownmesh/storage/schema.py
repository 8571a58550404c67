"""
Snapshot Sink Schema: DDL for the Relational Replica

Tables:
- groups: one denormalized row per group (latest committed snapshot)
- events: append-only audit log, one row per committed session mutation

Both dialects share column names so external tooling can query either.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)


class SnapshotSchema:
    """DDL and upsert statements for SQLite and PostgreSQL."""

    SQLITE_GROUPS_DDL = """
    CREATE TABLE IF NOT EXISTS groups (
        group_id TEXT PRIMARY KEY NOT NULL,
        label TEXT NOT NULL,
        timezone TEXT NOT NULL,
        version INTEGER NOT NULL,
        snapshot TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """

    SQLITE_EVENTS_DDL = """
    CREATE TABLE IF NOT EXISTS events (
        event_id TEXT PRIMARY KEY NOT NULL,
        group_id TEXT NOT NULL,
        session_id TEXT NOT NULL,
        action TEXT NOT NULL,
        payload TEXT,
        occurred_at TEXT NOT NULL
    );
    """

    POSTGRES_GROUPS_DDL = """
    CREATE TABLE IF NOT EXISTS groups (
        group_id TEXT PRIMARY KEY,
        label TEXT NOT NULL,
        timezone TEXT NOT NULL,
        version BIGINT NOT NULL,
        snapshot JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    );
    """

    POSTGRES_EVENTS_DDL = """
    CREATE TABLE IF NOT EXISTS events (
        event_id UUID PRIMARY KEY,
        group_id TEXT NOT NULL,
        session_id TEXT NOT NULL,
        action TEXT NOT NULL,
        payload JSONB,
        occurred_at TIMESTAMPTZ NOT NULL
    );
    """

    EVENTS_INDEXES = [
        """CREATE INDEX IF NOT EXISTS idx_events_group
           ON events(group_id);""",
        """CREATE INDEX IF NOT EXISTS idx_events_session
           ON events(session_id);""",
    ]

    # created_at is kept from the first insert; a stale version never
    # overwrites a newer one.
    SQLITE_UPSERT_GROUP = """
    INSERT INTO groups (group_id, label, timezone, version, snapshot, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(group_id) DO UPDATE SET
        label = excluded.label,
        timezone = excluded.timezone,
        version = excluded.version,
        snapshot = excluded.snapshot,
        updated_at = excluded.updated_at
    WHERE groups.version <= excluded.version
    """

    SQLITE_INSERT_EVENT = """
    INSERT INTO events (event_id, group_id, session_id, action, payload, occurred_at)
    VALUES (?, ?, ?, ?, ?, ?)
    """

    POSTGRES_UPSERT_GROUP = """
    INSERT INTO groups (group_id, label, timezone, version, snapshot, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
    ON CONFLICT (group_id) DO UPDATE SET
        label = EXCLUDED.label,
        timezone = EXCLUDED.timezone,
        version = EXCLUDED.version,
        snapshot = EXCLUDED.snapshot,
        updated_at = EXCLUDED.updated_at
    WHERE groups.version <= EXCLUDED.version
    """

    POSTGRES_INSERT_EVENT = """
    INSERT INTO events (event_id, group_id, session_id, action, payload, occurred_at)
    VALUES ($1::uuid, $2, $3, $4, $5::jsonb, $6)
    """

    @classmethod
    def create_sqlite(cls, conn: sqlite3.Connection) -> None:
        """Create tables and indexes on an open SQLite connection."""
        conn.execute(cls.SQLITE_GROUPS_DDL)
        conn.execute(cls.SQLITE_EVENTS_DDL)
        for idx in cls.EVENTS_INDEXES:
            conn.execute(idx)
        logger.info("Snapshot schema ready (sqlite)")

    @classmethod
    def postgres_statements(cls) -> list[str]:
        return [cls.POSTGRES_GROUPS_DDL, cls.POSTGRES_EVENTS_DDL, *cls.EVENTS_INDEXES]
