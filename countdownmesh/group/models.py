"""
Group Domain Model: Sessions and the GroupState Aggregate

Schema (wire / snapshot JSON, camelCase):
    GroupState {
        groupId, label, timezone,
        sessions: [Session, ...]      # sorted by startTimeUtc ascending
        activeSessionId,              # reserved, never set by any mutation
        version, createdAt, updatedAt
    }
    Session {
        sessionId, label, startTimeUtc, durationMs, status, metadata?
    }

Durable blob framing:
    [1-byte marker][payload]
    marker 0x00 -> payload is UTF-8 JSON
    marker 0x01 -> payload is an LZ4 frame of UTF-8 JSON
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import lz4.frame

from countdownmesh.core import constants as C
from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, Ok, Result, Timestamp


class SessionStatus(str, Enum):
    """Session lifecycle label. Changed only by explicit update."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELED = "canceled"

    @classmethod
    def parse(cls, raw: Any) -> Optional[SessionStatus]:
        try:
            return cls(raw)
        except ValueError:
            return None


# =============================================================================
# SESSION
# =============================================================================
@dataclass(slots=True)
class Session:
    """One schedulable countdown item."""

    session_id: str
    label: str
    start_time_utc: str
    duration_ms: int
    status: SessionStatus = SessionStatus.SCHEDULED
    metadata: Optional[dict[str, Any]] = None

    @property
    def start_instant(self) -> Timestamp:
        """
        Instant used for ordering.

        Values are validated on the way in; a blob written by an older
        build with an unparsable start sorts first rather than failing.
        """
        return Timestamp.parse_iso(self.start_time_utc).unwrap_or(Timestamp(nanos=0))

    def merge_metadata(self, changes: dict[str, Any]) -> None:
        """Shallow merge: existing keys are overwritten, others kept."""
        self.metadata = {**(self.metadata or {}), **changes}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sessionId": self.session_id,
            "label": self.label,
            "startTimeUtc": self.start_time_utc,
            "durationMs": self.duration_ms,
            "status": self.status.value,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            session_id=data["sessionId"],
            label=data["label"],
            start_time_utc=data["startTimeUtc"],
            duration_ms=data["durationMs"],
            status=SessionStatus(data.get("status", SessionStatus.SCHEDULED.value)),
            metadata=data.get("metadata"),
        )


def sort_sessions(sessions: list[Session]) -> list[Session]:
    """Stable ascending sort by start instant."""
    return sorted(sessions, key=lambda s: s.start_instant)


# =============================================================================
# GROUP STATE (AGGREGATE ROOT)
# =============================================================================
@dataclass(slots=True)
class GroupState:
    """
    Aggregate root owned by exactly one coordinator.

    Mutated only through GroupCoordinator; never shared outside it except
    as a serialized copy.
    """

    group_id: str
    label: str
    timezone: str
    sessions: list[Session] = field(default_factory=list)
    active_session_id: Optional[str] = None
    version: int = 0
    created_at: str = field(default_factory=lambda: Timestamp.now().to_iso())
    updated_at: str = field(default_factory=lambda: Timestamp.now().to_iso())

    @classmethod
    def fallback(
        cls,
        group_id: str,
        label: str = C.DEFAULT_GROUP_LABEL,
        timezone: str = C.DEFAULT_TIMEZONE,
    ) -> GroupState:
        """State for a group that has never been persisted."""
        now = Timestamp.now().to_iso()
        return cls(
            group_id=group_id,
            label=label,
            timezone=timezone,
            version=0,
            created_at=now,
            updated_at=now,
        )

    def find_session(self, session_id: str) -> Optional[Session]:
        for session in self.sessions:
            if session.session_id == session_id:
                return session
        return None

    def clone(self) -> GroupState:
        """Deep copy used as the draft of a mutation."""
        return copy.deepcopy(self)

    def resort(self) -> None:
        self.sessions = sort_sessions(self.sessions)

    # -------------------------------------------------------------------------
    # SERIALIZATION
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "label": self.label,
            "timezone": self.timezone,
            "sessions": [s.to_dict() for s in self.sessions],
            "activeSessionId": self.active_session_id,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupState:
        return cls(
            group_id=data["groupId"],
            label=data.get("label", C.DEFAULT_GROUP_LABEL),
            timezone=data.get("timezone", C.DEFAULT_TIMEZONE),
            sessions=[Session.from_dict(s) for s in data.get("sessions", [])],
            active_session_id=data.get("activeSessionId"),
            version=int(data.get("version", 0)),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    def to_bytes(self, compress: bool = True, threshold: int = C.COMPRESSION_THRESHOLD_BYTES) -> bytes:
        """
        Encode as a framed durable blob.

        Uses LZ4 frame compression only when the JSON exceeds threshold.
        """
        data = self.to_json().encode("utf-8")
        if compress and len(data) > threshold:
            return bytes([C.BLOB_MARKER_LZ4]) + lz4.frame.compress(data)
        return bytes([C.BLOB_MARKER_RAW]) + data

    @classmethod
    def from_bytes(cls, blob: bytes) -> Result[GroupState, StorageError]:
        """Decode a framed durable blob."""
        if not blob:
            return Err(StorageError.corruption("empty state blob"))

        marker, payload = blob[0], blob[1:]
        try:
            if marker == C.BLOB_MARKER_LZ4:
                payload = lz4.frame.decompress(payload)
            elif marker != C.BLOB_MARKER_RAW:
                return Err(StorageError.corruption(f"unknown blob marker 0x{marker:02x}"))
            return Ok(cls.from_dict(json.loads(payload.decode("utf-8"))))
        except (RuntimeError, ValueError, KeyError, TypeError) as e:
            return Err(StorageError.corruption(str(e), cause=e))
