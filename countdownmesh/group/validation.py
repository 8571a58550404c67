"""
Request payload validation for group mutations.

Required fields use truthiness: a durationMs of 0 or an empty label is
reported as missing, not as invalid. Present values must then be well
formed so the ordering invariant can always be evaluated.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Optional

from countdownmesh.core.errors import ValidationError
from countdownmesh.core.types import Err, Ok, Result, Timestamp
from countdownmesh.group.models import SessionStatus

CREATE_REQUIRED = ("label", "startTimeUtc", "durationMs")
UPDATABLE_FIELDS = ("label", "startTimeUtc", "durationMs", "status", "metadata")


@dataclass(frozen=True, slots=True)
class NewSession:
    label: str
    start_time_utc: str
    duration_ms: int
    metadata: Optional[dict[str, Any]]


@dataclass(frozen=True, slots=True)
class SessionChanges:
    """Validated subset of an update payload; None means leave unchanged."""

    label: Optional[str] = None
    start_time_utc: Optional[str] = None
    duration_ms: Optional[int] = None
    status: Optional[SessionStatus] = None
    metadata: Optional[dict[str, Any]] = None


def _check_label(value: Any) -> Result[str, ValidationError]:
    if not isinstance(value, str):
        return Err(ValidationError.invalid_field("label", value, "must be a string"))
    return Ok(value)


def _check_start(value: Any) -> Result[str, ValidationError]:
    parsed = Timestamp.parse_iso(value)
    if parsed.is_err():
        return Err(ValidationError.invalid_field("startTimeUtc", value, parsed.error))
    return Ok(value)


def _check_duration(value: Any) -> Result[int, ValidationError]:
    if isinstance(value, bool):
        return Err(ValidationError.invalid_field("durationMs", value, "must be an integer"))
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return Err(ValidationError.invalid_field("durationMs", value, "must be an integer"))
    if value <= 0:
        return Err(ValidationError.invalid_field("durationMs", value, "must be positive"))
    return Ok(value)


def _check_metadata(value: Any) -> Result[dict[str, Any], ValidationError]:
    if not isinstance(value, dict):
        return Err(ValidationError.invalid_field("metadata", value, "must be an object"))
    return Ok(value)


def validate_new_session(payload: Optional[dict[str, Any]]) -> Result[NewSession, ValidationError]:
    payload = payload if isinstance(payload, dict) else {}

    missing = [name for name in CREATE_REQUIRED if not payload.get(name)]
    if missing:
        return Err(ValidationError.missing_fields(*missing))

    label = _check_label(payload["label"])
    if label.is_err():
        return label
    start = _check_start(payload["startTimeUtc"])
    if start.is_err():
        return start
    duration = _check_duration(payload["durationMs"])
    if duration.is_err():
        return duration

    metadata: Optional[dict[str, Any]] = None
    if payload.get("metadata") is not None:
        checked = _check_metadata(payload["metadata"])
        if checked.is_err():
            return checked
        metadata = copy.deepcopy(checked.unwrap())

    return Ok(NewSession(
        label=label.unwrap(),
        start_time_utc=start.unwrap(),
        duration_ms=duration.unwrap(),
        metadata=metadata,
    ))


def validate_changes(payload: Optional[dict[str, Any]]) -> Result[SessionChanges, ValidationError]:
    """
    Validate a partial update.

    Falsy values are skipped, matching create's notion of "absent".
    Keys outside UPDATABLE_FIELDS (including sessionId) are ignored.
    """
    payload = payload if isinstance(payload, dict) else {}
    changes: dict[str, Any] = {}

    if payload.get("label"):
        checked = _check_label(payload["label"])
        if checked.is_err():
            return checked
        changes["label"] = checked.unwrap()

    if payload.get("startTimeUtc"):
        checked = _check_start(payload["startTimeUtc"])
        if checked.is_err():
            return checked
        changes["start_time_utc"] = checked.unwrap()

    if payload.get("durationMs"):
        checked = _check_duration(payload["durationMs"])
        if checked.is_err():
            return checked
        changes["duration_ms"] = checked.unwrap()

    if payload.get("status"):
        status = SessionStatus.parse(payload["status"])
        if status is None:
            allowed = ", ".join(s.value for s in SessionStatus)
            return Err(ValidationError.invalid_field(
                "status", payload["status"], f"must be one of {allowed}",
            ))
        changes["status"] = status

    if payload.get("metadata"):
        checked = _check_metadata(payload["metadata"])
        if checked.is_err():
            return checked
        changes["metadata"] = copy.deepcopy(checked.unwrap())

    return Ok(SessionChanges(**changes))
