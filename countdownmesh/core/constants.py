"""
System-Wide Constants for the Countdown Mesh

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS
HOUR_MS: Final[int] = 60 * MINUTE_MS

NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# GROUP DEFAULTS
# =============================================================================
DEFAULT_GROUP_LABEL: Final[str] = "Untitled Group"
DEFAULT_TIMEZONE: Final[str] = "UTC"

# Logical slot name of the state blob inside a group's durable namespace
STATE_SLOT_KEY: Final[str] = "group"

# =============================================================================
# DURABLE STORE
# =============================================================================
BLOB_MARKER_RAW: Final[int] = 0x00
BLOB_MARKER_LZ4: Final[int] = 0x01
COMPRESSION_THRESHOLD_BYTES: Final[int] = 1 * KB
SQLITE_BUSY_TIMEOUT_MS: Final[int] = 5 * SECOND_MS

# =============================================================================
# SNAPSHOT SINK (PostgreSQL)
# =============================================================================
PG_POOL_MIN: Final[int] = 1
PG_POOL_MAX: Final[int] = 10
PG_COMMAND_TIMEOUT_MS: Final[int] = 10 * SECOND_MS

# =============================================================================
# AUDIT ACTIONS
# =============================================================================
ACTION_SESSION_CREATED: Final[str] = "session.created"
ACTION_SESSION_UPDATED: Final[str] = "session.updated"
ACTION_SESSION_DELETED: Final[str] = "session.deleted"

# Commit label for group-level changes; these are not audited
ACTION_GROUP_BOOTSTRAPPED: Final[str] = "group.bootstrapped"
