"""
Error Hierarchy for the Countdown Mesh

Design Principles:
- Domain failures are returned as Err(...) values, not raised
- Every error carries a unique code for programmatic handling
- Every error knows the HTTP status it surfaces as
- Carry full error context for debugging and audit trails

Usage:
    result = await coordinator.create_session(...)
    match result:
        case Ok((session, state)):
            ...
        case Err(ValidationError() as e):
            reply_bad_request(e.message)
        case Err(StorageError() as e):
            reply_server_error(e)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from countdownmesh.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Validation errors
    - 3xxx: Lookup and concurrency errors
    - 9xxx: Internal errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_WRITE_FAILED = 1002
    STORAGE_READ_FAILED = 1003
    STORAGE_CORRUPTION = 1004
    STORAGE_SINK_WRITE_FAILED = 1005
    STORAGE_AUDIT_WRITE_FAILED = 1006

    # Validation errors (2xxx)
    VALIDATION_MISSING_FIELDS = 2001
    VALIDATION_INVALID_FIELD = 2002
    VALIDATION_IMMUTABLE_FIELD = 2003

    # Lookup and concurrency errors (3xxx)
    LOOKUP_SESSION_NOT_FOUND = 3001
    LOOKUP_ROUTE_NOT_FOUND = 3002
    LOOKUP_METHOD_NOT_ALLOWED = 3003
    CONFLICT_VERSION_MISMATCH = 3101

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CountdownError(Exception):
    """
    Base class for all countdown mesh errors.

    Provides:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - HTTP status for the request boundary
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    http_status = 500

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error for logging.

        Excludes the cause stack trace to avoid leaking implementation
        details into logs shipped off-host.
        """
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.to_iso(),
            "context": self.context,
        }

    def to_response_body(self) -> dict[str, Any]:
        """Body returned to HTTP callers."""
        return {"error": self.message, "code": self.code.name}

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass
class ValidationError(CountdownError):
    """Missing or invalid caller input. No state change, no audit event."""

    http_status = 400

    @classmethod
    def missing_fields(cls, *fields: str) -> ValidationError:
        names = list(fields)
        if len(names) == 1:
            message = f"{names[0]} is required"
        else:
            message = f"{', '.join(names[:-1])} and {names[-1]} are required"
        return cls(
            code=ErrorCode.VALIDATION_MISSING_FIELDS,
            message=message,
            context={"fields": names},
        )

    @classmethod
    def invalid_field(
        cls,
        field_name: str,
        value: Any,
        reason: str,
    ) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_INVALID_FIELD,
            message=f"Invalid {field_name}: {reason}",
            context={"field": field_name, "value": str(value)[:100], "reason": reason},
        )

    @classmethod
    def immutable_field(
        cls,
        field_name: str,
        current: Any,
        requested: Any,
    ) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_IMMUTABLE_FIELD,
            message=f"{field_name} is immutable once set",
            context={
                "field": field_name,
                "current": str(current),
                "requested": str(requested)[:100],
            },
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================
@dataclass
class NotFoundError(CountdownError):
    """Referenced resource does not exist. No state change."""

    http_status = 404

    @classmethod
    def session(cls, session_id: str) -> NotFoundError:
        return cls(
            code=ErrorCode.LOOKUP_SESSION_NOT_FOUND,
            message="Session not found",
            context={"session_id": session_id},
        )

    @classmethod
    def route(cls, method: str, path: str) -> NotFoundError:
        return cls(
            code=ErrorCode.LOOKUP_ROUTE_NOT_FOUND,
            message="Route not found",
            context={"method": method, "path": path},
        )


@dataclass
class MethodNotAllowedError(CountdownError):
    """Path exists but not for this method."""

    http_status = 405

    @classmethod
    def for_path(cls, method: str, path: str) -> MethodNotAllowedError:
        return cls(
            code=ErrorCode.LOOKUP_METHOD_NOT_ALLOWED,
            message="Method not allowed",
            context={"method": method, "path": path},
        )


@dataclass
class ConflictError(CountdownError):
    """Optimistic concurrency token no longer matches the group version."""

    http_status = 409

    @classmethod
    def version_mismatch(cls, expected: int, actual: int) -> ConflictError:
        return cls(
            code=ErrorCode.CONFLICT_VERSION_MISMATCH,
            message=f"Version conflict: expected {expected}, current is {actual}",
            context={"expected_version": expected, "current_version": actual},
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(CountdownError):
    """
    Errors from the durable store and the snapshot sink.

    A durable store failure is fatal to the operation that caused it. Sink
    and audit failures are recovered locally by the coordinator.
    """

    http_status = 500

    @classmethod
    def connection_failed(
        cls,
        backend: str,
        target: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to {backend} at {target}",
            cause=cause,
            context={"backend": backend, "target": target},
        )

    @classmethod
    def write_failed(
        cls,
        backend: str,
        key: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_WRITE_FAILED,
            message=f"Durable write to {backend} failed for '{key}'",
            cause=cause,
            context={"backend": backend, "key": key},
        )

    @classmethod
    def read_failed(
        cls,
        backend: str,
        key: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_READ_FAILED,
            message=f"Durable read from {backend} failed for '{key}'",
            cause=cause,
            context={"backend": backend, "key": key},
        )

    @classmethod
    def corruption(
        cls,
        description: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_CORRUPTION,
            message=f"Stored state is unreadable: {description}",
            cause=cause,
        )

    @classmethod
    def sink_write_failed(
        cls,
        backend: str,
        group_id: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_SINK_WRITE_FAILED,
            message=f"Snapshot upsert to {backend} failed for group '{group_id}'",
            cause=cause,
            context={"backend": backend, "group_id": group_id},
        )

    @classmethod
    def audit_write_failed(
        cls,
        backend: str,
        event_id: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_AUDIT_WRITE_FAILED,
            message=f"Audit event insert to {backend} failed for '{event_id}'",
            cause=cause,
            context={"backend": backend, "event_id": event_id},
        )


@dataclass
class InternalError(CountdownError):
    """Unexpected failure at the request boundary."""

    http_status = 500

    @classmethod
    def unexpected(cls, cause: Exception) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message="Internal error",
            cause=cause,
            context={"exception": type(cause).__name__},
        )
