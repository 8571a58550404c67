"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the countdown mesh:
- Result/Either monads for zero-exception control flow
- Coded error hierarchy mapped onto HTTP statuses
- Configuration management with validation
"""

from countdownmesh.core.types import (
    Result,
    Ok,
    Err,
    GroupId,
    Timestamp,
    new_session_id,
    new_event_id,
)
from countdownmesh.core.errors import (
    ErrorCode,
    CountdownError,
    ValidationError,
    NotFoundError,
    MethodNotAllowedError,
    ConflictError,
    StorageError,
    InternalError,
)
from countdownmesh.core.config import (
    CountdownConfig,
    DurableStoreConfig,
    SnapshotSinkConfig,
    CoordinatorConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "GroupId",
    "Timestamp",
    "new_session_id",
    "new_event_id",
    "ErrorCode",
    "CountdownError",
    "ValidationError",
    "NotFoundError",
    "MethodNotAllowedError",
    "ConflictError",
    "StorageError",
    "InternalError",
    "CountdownConfig",
    "DurableStoreConfig",
    "SnapshotSinkConfig",
    "CoordinatorConfig",
    "ObservabilityConfig",
]
